"""
Integracion con Feishu Bitable (open API).

- client: cliente HTTP async (httpx) con cache de tenant token
- field_templates: plantillas de columna por tipo de dato
"""
