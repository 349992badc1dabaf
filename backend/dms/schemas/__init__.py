"""
dms.schemas

Package des schémas API (Pydantic).

Rôle (fonctionnel) :
- Définit les modèles d’entrée/sortie utilisés par l’API (request/response).
- Sépare clairement :
  - les modèles ORM (dms.models) = persistance DB
  - les schémas Pydantic (dms.schemas) = contrat HTTP / validation
- Les énumérations métier (rôles, types, statuts, priorités) vivent dans dms.schemas.common.

Usage :
- Les endpoints FastAPI déclarent response_model=... et valident les payloads avec ces schémas.
- Le client terrain (dms.offline) réutilise les mêmes schémas pour valider ses brouillons.
"""
