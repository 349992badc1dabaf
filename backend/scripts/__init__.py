"""
scripts

Scripts d’exploitation (CLI) du backend.

- bootstrap_db          : création du schéma.
- seed_demo             : jeu de données de démonstration (Borno).
- issue_token           : émission d’un JWT de test pour un utilisateur.
- recompute_leaderboard : recalcul des rangs donateurs.
- field_sync            : client terrain (cycle unique, boucle, état et maintenance de la file).

Les scripts orchestrent ; la logique métier reste dans `dms`.
"""
