"""
Agrilo — backend de l'assistant agricole.

Sous-paquets :
  - core     : configuration, base de données, logging, erreurs, sécurité
  - services : logique métier et intégrations externes
  - api      : routes FastAPI
"""

__version__ = "1.0.0"
