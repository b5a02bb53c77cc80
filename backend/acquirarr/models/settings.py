"""
Settings Database Model for Acquirarr

Single-row table with the runtime toggles of the acquisition engine. Unlike
Config (environment, read at start-up), these can change while the service
runs and are re-read at the start of every sync/search cycle.

Note: This uses a singleton pattern - only one row exists in the settings table.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import Session

from .base import Base


PROPERS_PREFER_AND_UPGRADE = "preferAndUpgrade"
PROPERS_DO_NOT_UPGRADE = "doNotUpgrade"
PROPERS_DO_NOT_PREFER = "doNotPrefer"


class Settings(Base):
    """
    Runtime settings singleton.

    Table Structure:
        - redownload_failed: search again right after a download failed
        - auto_import_enabled: import completed downloads without operator action
        - propers_repacks_preference: how PROPER/REPACK releases of the same
          quality are treated (preferAndUpgrade, doNotUpgrade, doNotPrefer)
        - discord_webhook_url: optional notification webhook
        - movies_root / tv_root: library roots used when a target has no folder
    """

    __tablename__ = 'settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    redownload_failed = Column(Boolean, nullable=False, default=True)
    auto_import_enabled = Column(Boolean, nullable=False, default=True)
    propers_repacks_preference = Column(String(30), nullable=False, default=PROPERS_PREFER_AND_UPGRADE)
    discord_webhook_url = Column(String(500), nullable=True)
    movies_root = Column(String(1000), nullable=True)
    tv_root = Column(String(1000), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def get_settings(cls, db: Session) -> 'Settings':
        """
        Get the singleton settings instance, creating it with defaults.

        Args:
            db: SQLAlchemy database session

        Returns:
            Settings instance (the only row in the table)
        """
        settings = db.query(cls).first()
        if not settings:
            settings = cls(
                redownload_failed=True,
                auto_import_enabled=True,
                propers_repacks_preference=PROPERS_PREFER_AND_UPGRADE,
            )
            db.add(settings)
            db.commit()
            db.refresh(settings)
        return settings

    @classmethod
    def update_settings(cls, db: Session, **kwargs) -> 'Settings':
        """
        Update settings with provided values. Unknown keys are ignored.

        Example:
            Settings.update_settings(db, redownload_failed=False)
        """
        settings = cls.get_settings(db)
        for key, value in kwargs.items():
            if hasattr(settings, key):
                setattr(settings, key, value)
        settings.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(settings)
        return settings

    def to_dict(self) -> Dict[str, Any]:
        return {
            'redownload_failed': self.redownload_failed,
            'auto_import_enabled': self.auto_import_enabled,
            'propers_repacks_preference': self.propers_repacks_preference,
            'discord_webhook_configured': bool(self.discord_webhook_url),
            'movies_root': self.movies_root,
            'tv_root': self.tv_root,
        }

    def __repr__(self) -> str:
        return f"<Settings(id={self.id}, redownload_failed={self.redownload_failed})>"
