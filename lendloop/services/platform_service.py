from decimal import Decimal, InvalidOperation

from flask import current_app

from lendloop.errors import AppError, PayoutCalculationError
from lendloop.extensions import db
from lendloop.models import PlatformSetting
from lendloop.models.platform_setting import RATE_SETTING_KEYS
from lendloop.services.audit_service import AuditService
from lendloop.services.payout_calculator import FeeRates

CONFIG_KEYS = {
    "service_fee_rate": "SERVICE_FEE_RATE",
    "commission_rate": "PLATFORM_COMMISSION_RATE",
    "insurance_rate": "INSURANCE_RATE",
    "payout_hold_working_days": "PAYOUT_HOLD_WORKING_DAYS",
}


class PlatformService:
    @staticmethod
    def get_setting(key, default=None):
        setting = db.session.get(PlatformSetting, key)
        if not setting:
            return default
        return setting.value

    @staticmethod
    def get_decimal(key, default):
        raw = PlatformService.get_setting(key, str(default))
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            current_app.logger.warning("Ignoring non-numeric platform setting %s=%r", key, raw)
            return Decimal(str(default))

    @staticmethod
    def set_setting(key, value):
        setting = db.session.get(PlatformSetting, key)
        if setting:
            setting.value = str(value)
        else:
            setting = PlatformSetting(key=key, value=str(value))
            db.session.add(setting)
        return setting

    @staticmethod
    def _default(key):
        return current_app.config[CONFIG_KEYS[key]]

    @staticmethod
    def get_fee_rates():
        values = {key: PlatformService.get_decimal(key, PlatformService._default(key)) for key in RATE_SETTING_KEYS}
        return FeeRates(**values)

    @staticmethod
    def get_hold_days():
        key = "payout_hold_working_days"
        return int(PlatformService.get_decimal(key, PlatformService._default(key)))

    @staticmethod
    def settings_snapshot():
        snapshot = PlatformService.get_fee_rates().as_dict()
        snapshot["payout_hold_working_days"] = PlatformService.get_hold_days()
        return snapshot

    @staticmethod
    def update_settings(payload, admin=None):
        updates = {}
        for key in RATE_SETTING_KEYS:
            if payload.get(key) is None:
                continue
            try:
                value = Decimal(str(payload[key]))
            except InvalidOperation as exc:
                raise AppError(f"{key} must be a number.", 400) from exc
            if value < 0 or value > 1:
                raise AppError(f"{key} must be between 0 and 1.", 400)
            updates[key] = value

        hold_days = payload.get("payout_hold_working_days")
        if hold_days is not None:
            try:
                hold_days = int(hold_days)
            except (TypeError, ValueError) as exc:
                raise AppError("payout_hold_working_days must be a whole number.", 400) from exc
            if hold_days < 1:
                raise AppError("payout_hold_working_days must be at least 1.", 400)
            updates["payout_hold_working_days"] = hold_days

        if not updates:
            raise AppError("No settings to update.", 400)

        # Validate the combined table before persisting any of it.
        current = PlatformService.get_fee_rates()
        try:
            FeeRates(**{key: updates.get(key, getattr(current, key)) for key in RATE_SETTING_KEYS})
        except PayoutCalculationError as exc:
            raise AppError(exc.message, 400) from exc

        for key, value in updates.items():
            PlatformService.set_setting(key, value)
        if admin is not None:
            details = {key: str(value) for key, value in updates.items()}
            AuditService.record(admin, "update_settings", "platform", 0, details)
        db.session.commit()
        return updates
