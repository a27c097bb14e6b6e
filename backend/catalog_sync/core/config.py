"""
Configuracion central del motor de sincronizacion.
Gestiona variables de entorno y valores por defecto del pipeline
Douban -> Feishu (Bitable).

Soporta configuracion dinamica para desarrollo (ENVIRONMENT=development)
y produccion (ENVIRONMENT=production).
"""
from pydantic_settings import BaseSettings
from pydantic import Field, computed_field


class Settings(BaseSettings):
    """
    Clase de configuracion del motor de sync.
    Lee variables de entorno y proporciona valores por defecto.

    Grupos de configuracion:
    - Base de datos: donde se persisten los mapeos de campos
    - Redis: cache rapido (mapeos y estado de sync con TTL)
    - Feishu: API remota de tablas
    - Motor: tamanos de lote, concurrencia y pausas
    """

    # Configuracion de la aplicacion
    APP_NAME: str = Field(default="Catalog Sync Engine")
    APP_VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="production")

    # Base de datos - Componentes separados
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)
    DATABASE_USER: str = Field(default="catalog_user")
    DATABASE_PASSWORD: str = Field(default="catalog_pass")
    DATABASE_NAME: str = Field(default="catalog_db")

    # Base de datos - URL completa (override de componentes si se proporciona)
    DATABASE_URL: str = Field(default="")
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)

    # Redis (cache rapido)
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    CACHE_KEY_PREFIX: str = Field(default="feishu")
    MAPPING_CACHE_TTL_SECONDS: int = Field(default=1800)
    SYNC_STATE_TTL_SECONDS: int = Field(default=3600)

    # Feishu open API
    FEISHU_BASE_URL: str = Field(default="https://open.feishu.cn")
    FEISHU_TIMEOUT_SECONDS: float = Field(default=60.0)
    # Solo reintentos de conexion (transporte httpx). El motor no reintenta.
    FEISHU_CONNECT_RETRIES: int = Field(default=0)
    FEISHU_PAGE_SIZE: int = Field(default=500)
    FEISHU_PAGE_DELAY_SECONDS: float = Field(default=0.5)
    FEISHU_TOKEN_REFRESH_BUFFER_SECONDS: int = Field(default=300)

    # Motor de sync
    SYNC_WRITE_BATCH_SIZE: int = Field(default=100)
    SYNC_MAX_CONCURRENT_BATCHES: int = Field(default=3)
    SYNC_DELETE_DELAY_SECONDS: float = Field(default=0.5)
    FIELD_CREATION_SUB_BATCH_SIZE: int = Field(default=5)
    FIELD_CREATION_DELAY_SECONDS: float = Field(default=1.0)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="logs/catalog_sync.log")

    @computed_field
    @property
    def effective_database_url(self) -> str:
        """
        Retorna la URL de base de datos efectiva.
        Si DATABASE_URL esta definida, la usa directamente.
        Si no, construye la URL desde los componentes individuales.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )

    @computed_field
    @property
    def is_development(self) -> bool:
        """Indica si el entorno es de desarrollo."""
        return self.ENVIRONMENT.lower() == "development"

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignorar campos extra del .env


# Instancia global de configuracion
settings = Settings()
