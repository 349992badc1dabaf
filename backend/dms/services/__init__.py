"""
dms.services

Package “services” : logique applicative (use-cases) indépendante des endpoints HTTP.

Rôle (fonctionnel) :
- Logique pure, testable sans base :
  - gap_analysis (écarts d’une évaluation, écarts de ressources d’une entité)
  - donor_matching (score de compatibilité donateur / écarts)
  - conflict_resolution (stratégies de résolution des conflits de synchro)
  - gamification_service.compute_metrics, trends_service.build_trends
- Orchestration DB (sessions async) : évaluations, réponses, engagements, vérification,
  synchro, tableaux de bord, exports, audit.

Principe :
- dms.api = transport HTTP (routes, validation, dépendances)
- dms.services = orchestration métier (réutilisable, testable) ; flush sans commit,
  le commit reste à la route
- dms.models / dms.schemas = persistance et contrats
"""
