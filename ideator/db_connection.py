# ideator/db_connection.py
import logging
import os
from typing import Callable

from google.auth import default as google_auth_default
from google.cloud import secretmanager
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ideator import settings
from ideator.entities import Base

logger = logging.getLogger("ideator_backend")


class DbConnection:
    """
    Engine + Session factory for the specification store.

    !###############################################
    !   EITHER SET DATABASE_URL IN THE .ENV FILE OR
    !   CONNECT TO CLOUD SQL WITH DB_* VARIABLES
    !###############################################
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.PROJECT_ID = settings.PROJECT_ID
        self.DB_HOST = settings.DB_HOST
        self.DB_PORT = settings.DB_PORT
        self.DB_NAME = settings.DB_NAME
        self.DB_USER = settings.DB_USER
        self.DB_PASSWORD = settings.DB_PASSWORD or ""
        self.DB_SECRET_ID = settings.DB_SECRET_ID or ""

        self.DATABASE_URL = database_url or settings.DATABASE_URL
        if not self.DATABASE_URL:
            self.DATABASE_URL = (
                f"postgresql+pg8000://{self.DB_USER}:{self._get_db_password_lazy()}"
                f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            )
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    # -------- GCP auth / creds --------
    def _build_creds(self):
        key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        scopes = ["https://www.googleapis.com/auth/cloud-platform"]
        if key_path and os.path.exists(key_path):
            return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
        creds, _ = google_auth_default(scopes=scopes)
        return creds

    # -------- DB password (Secret Manager) --------
    def _get_db_password_lazy(self) -> str:
        if self.DB_PASSWORD:
            return self.DB_PASSWORD
        if self.DB_SECRET_ID:
            client = secretmanager.SecretManagerServiceClient(credentials=self._build_creds())
            name = client.secret_version_path(self.PROJECT_ID, self.DB_SECRET_ID, "latest")
            resp = client.access_secret_version(request={"name": name})
            self.DB_PASSWORD = resp.payload.data.decode("utf-8")
            return self.DB_PASSWORD
        raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")

    # -------- Engine --------
    def get_engine(self) -> Engine:
        if self._engine is None:
            url = self.DATABASE_URL
            if url.startswith("sqlite"):
                kwargs = {"connect_args": {"check_same_thread": False}}
                if ":memory:" in url or url.rstrip("/") == "sqlite:":
                    # one shared connection, otherwise each session sees an empty database
                    kwargs["poolclass"] = StaticPool
                self._engine = create_engine(url, future=True, **kwargs)
            else:
                # pg8000 supports 'timeout' in seconds
                self._engine = create_engine(
                    url,
                    future=True,
                    pool_pre_ping=True,
                    connect_args={"timeout": 10},
                )
            logger.info(f"[DB] Engine ready ({self._engine.url.render_as_string(hide_password=True)})")
        return self._engine

    def create_schema(self) -> None:
        Base.metadata.create_all(self.get_engine())

    # -------- SQLAlchemy Session factory --------
    def build_db_session_factory(self) -> Callable[[], Session]:
        if self._sessionmaker is None:
            self._sessionmaker = sessionmaker(
                bind=self.get_engine(),
                autoflush=False,
                autocommit=False,
                future=True,
            )

        def _factory() -> Session:
            return self._sessionmaker()

        return _factory
