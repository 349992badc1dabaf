"""
dms.db

Package base de données : connexion, session et helpers d’accès DB.

Contenu :
- base    : Base déclarative + types partagés (UUID, JSON/JSONB) + horodatage UTC.
- session : engine async et sessions AsyncSession pour FastAPI (Depends(get_db)).
"""
