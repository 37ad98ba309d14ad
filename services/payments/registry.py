# services/payments/registry.py
from flask import current_app

from services.payments.config import PayzoneConfig
from services.payments.payzone_provider import PayzonePaywall
from services.payments.callbacks import CallbackHandler
from services.payments.payzone_api import PayzoneAPI


def get_config() -> PayzoneConfig:
    return PayzoneConfig.from_mapping(current_app.config)


def get_order_store():
    # Tests (or another backend) may install their own under this key
    store = current_app.extensions.get("order_store")
    if store is None:
        from models.orders_store import SqlOrderStore
        store = SqlOrderStore()
        current_app.extensions["order_store"] = store
    return store


def get_initiator() -> PayzonePaywall:
    return PayzonePaywall(get_config())


def get_callback_handler() -> CallbackHandler:
    return CallbackHandler(get_config(), get_order_store())


def get_api_client() -> PayzoneAPI:
    return PayzoneAPI(get_config())
