"""
dms

Package racine du backend de gestion de catastrophes (évaluations terrain, réponses,
engagements donateurs, synchro hors-ligne).

Organisation :
- dms.api      : routes FastAPI (contrats HTTP, dépendances, WebSocket)
- dms.core     : briques transverses (settings, errors, logs, sécurité, realtime, rate-limit)
- dms.db       : base SQLAlchemy + session async
- dms.models   : modèles ORM
- dms.schemas  : schémas Pydantic (entrées/sorties API, données typées des évaluations)
- dms.services : logique métier (workflow, écarts, matching donateurs, gamification, synchro)
- dms.offline  : client terrain (brouillons locaux SQLite, file de synchro, moteur httpx)
"""
