from sqlalchemy.orm import Session
from models.app_config import AppConfig
from schemas.app_config import AppConfigCreate, AppConfigUpdate
from config import QuotationSettings
import logging

# Audit imports
from crud.audit_log import create_audit_log
from schemas.audit_log import AuditLogCreate
from utils import sqlalchemy_to_dict

logger = logging.getLogger("app_config")


def validate_setting(name: str, value: str):
    """Raise ValueError when a known quotation setting gets a value it cannot parse."""
    if name not in QuotationSettings.CONFIG_KEYS:
        return
    try:
        QuotationSettings().with_overrides({name: value})
    except (ValueError, ArithmeticError):
        raise ValueError(f"Invalid value {value!r} for setting {name}")


# Create a new config entry
def create_config(db: Session, config: AppConfigCreate, user_id: str):
    validate_setting(config.name, config.value)
    db_config = AppConfig(name=config.name, value=config.value, created_by=user_id)
    db.add(db_config)
    db.flush()

    create_audit_log(db, AuditLogCreate(
        table_name='app_config',
        record_id=db_config.id,
        changed_by=user_id or "system",
        action='CREATE',
        old_values={},
        new_values=sqlalchemy_to_dict(db_config)
    ))
    db.commit()
    db.refresh(db_config)
    return db_config


# Get config by name (or all configs)
def get_config(db: Session, name: str = None):
    if name:
        return db.query(AppConfig).filter(AppConfig.name == name).first()
    return db.query(AppConfig).order_by(AppConfig.name).all()


# Update config by name
def update_config_by_name(db: Session, name: str, config: AppConfigUpdate, user_id: str):
    db_config = db.query(AppConfig).filter(AppConfig.name == name).first()
    if not db_config:
        return None

    validate_setting(name, config.value)
    old_values = sqlalchemy_to_dict(db_config)
    for field, value in config.model_dump(exclude_unset=True).items():
        setattr(db_config, field, value)
    db_config.updated_by = user_id
    db.flush()

    create_audit_log(db, AuditLogCreate(
        table_name='app_config',
        record_id=db_config.id,
        changed_by=user_id or "system",
        action='UPDATE',
        old_values=old_values,
        new_values=sqlalchemy_to_dict(db_config)
    ))
    db.commit()
    db.refresh(db_config)
    return db_config


def get_quotation_settings(db: Session, base: QuotationSettings = None) -> QuotationSettings:
    """Environment defaults overlaid with any matching app_config rows."""
    base = base or QuotationSettings.from_env()
    names = list(QuotationSettings.CONFIG_KEYS.keys())
    rows = db.query(AppConfig).filter(AppConfig.name.in_(names)).all()
    try:
        return base.with_overrides({row.name: row.value for row in rows})
    except (ValueError, ArithmeticError) as e:
        logger.error(f"Ignoring malformed quotation settings in app_config: {e}")
        return base
