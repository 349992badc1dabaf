"""
Client terrain (hors-ligne).

Rôle (fonctionnel) :
- store  : base SQLite locale (brouillons d’évaluation + file de synchro).
- drafts : sauvegarde auto, lecture, suppression et soumission des brouillons.
- queue  : file de synchro (priorités, tentatives, délais de retry, métriques).
- engine : pousse les lots vers /sync/batch quand la connectivité revient.
"""
