"""
API Module — couche HTTP FastAPI.

- deps    : dependencies (base de données, utilisateur courant)
- schemas : modèles Pydantic des corps de requête
- routes  : routers par domaine
"""
