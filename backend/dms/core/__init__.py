"""
dms.core

Package “cœur” : tout ce qui est transversal et ne dépend d’aucun domaine métier
(incidents, évaluations, réponses, engagements donateurs...).

- settings   : configuration (variables d’environnement, .env).
- errors     : format d’erreur API uniforme + exceptions applicatives.
- logging    : logs JSON enrichis du request_id.
- request_id : identifiant de corrélation par requête (ContextVar).
- security   : vérification des jetons JWT.
- rate_limit : limitation de débit en mémoire (synchro terrain, écritures).
- realtime   : manager WebSocket (diffusion des événements de vérification, livraisons, synchro).
"""
