"""
Utilitaires transverses des clients d'API externes.

- cache          : cache mémoire à TTL
- error_handling : rate limiting à fenêtre fixe, retry avec backoff
"""
