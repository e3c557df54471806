"""Enumerations and lookup tables shared across the Wellcomm sales modules.

The header synonym table and the payment-method vocabulary live here so the
parser, the header mapper and the data layer agree on a single source of
truth for spreadsheet identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping


# Ledger layout version expected in config.ini.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class InstallationType(str, Enum):
    """Commission tier of an installation."""

    FREE = "FREE"
    PAID = "PAID"


class Currency(str, Enum):
    """Currency a sale was settled in, derived from its payment method."""

    USD = "USD"
    BCV = "BCV"


class CommissionValueType(str, Enum):
    """How a commission term turns its value into an amount."""

    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"


class SheetName(str, Enum):
    """Worksheet names of the sales ledger workbook."""

    UPLOADS = "Uploads"
    SALES = "Sales"


class ColumnKey(str, Enum):
    """Canonical field keys a spreadsheet header can map to."""

    FECHA = "fecha"
    NOMBRE = "nombre"
    ZONA = "zona"
    GRATIS = "gratis"
    PLAN = "plan"
    VENDEDOR = "vendedor"
    DINERO_RECIBIDO = "dineroRecibido"
    MEDIO_PAGO = "medioPago"
    MONTO_SUSCRIPCION = "montoSuscripcion"
    REFERENCIA_REGISTRO = "referenciaRegistro"
    # Recognized in headers but not read into transactions.
    EQUIPO = "equipo"
    PAGADO_COMISION_VENDEDORES = "pagadoComisionVendedores"
    PAGADA_COMISION_INSTALADORES = "pagadaComisionInstaladores"
    QUIEN_RECIBE = "quienRecibe"


# Normalized header text -> canonical key.
HEADER_SYNONYMS: Mapping[str, ColumnKey] = {
    "fecha": ColumnKey.FECHA,
    "nombre": ColumnKey.NOMBRE,
    "zona": ColumnKey.ZONA,
    "gratis": ColumnKey.GRATIS,
    "plan": ColumnKey.PLAN,
    "vendedor": ColumnKey.VENDEDOR,
    "equipo": ColumnKey.EQUIPO,
    "dinero recibido wellcomm": ColumnKey.DINERO_RECIBIDO,
    "pagado comision vendedores": ColumnKey.PAGADO_COMISION_VENDEDORES,
    "pagada comision instaladores": ColumnKey.PAGADA_COMISION_INSTALADORES,
    "medio de pago": ColumnKey.MEDIO_PAGO,
    "metodo de pago": ColumnKey.MEDIO_PAGO,
    "forma de pago": ColumnKey.MEDIO_PAGO,
    "tipo de pago": ColumnKey.MEDIO_PAGO,
    "pago": ColumnKey.MEDIO_PAGO,
    "monto suscripcion": ColumnKey.MONTO_SUSCRIPCION,
    "quien recibe": ColumnKey.QUIEN_RECIBE,
    "referencia de registro": ColumnKey.REFERENCIA_REGISTRO,
}

# Values that identify the unnamed payment-method column.
KNOWN_PAYMENT_VALUES = frozenset(
    {
        "zelle",
        "efectivo",
        "efectivo bs",
        "efectivo bolivares",
        "pago movil",
        "mixto",
    }
)

USD_PAYMENT_METHODS = frozenset({"zelle", "efectivo"})
BCV_PAYMENT_METHODS = frozenset({"efectivo bs", "pago movil", "mixto"})

PAYMENT_CONFIRMED_MARKER = "PAGADO"
FREE_INSTALLATION_MARKER = "GRATIS"

# Rows inspected when looking for the unnamed payment column.
PAYMENT_COLUMN_SAMPLE_SIZE = 10

DEFAULT_SELLER_FREE_COMMISSION = Decimal("8")
DEFAULT_SELLER_PAID_COMMISSION = Decimal("10")
DEFAULT_INSTALLER_FREE_PERCENTAGE = Decimal("0.5")
DEFAULT_INSTALLER_PAID_PERCENTAGE = Decimal("0.7")

DEFAULT_PLAN_PRICES: Mapping[str, Decimal] = {
    "RESIDENTIAL 100": Decimal("20"),
    "RESIDENTIAL 200": Decimal("25"),
    "RESIDENTIAL 400": Decimal("35"),
    "RESIDENTIAL 600": Decimal("55"),
    "RESIDENTIAL 800": Decimal("75"),
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "InstallationType",
    "Currency",
    "CommissionValueType",
    "SheetName",
    "ColumnKey",
    "HEADER_SYNONYMS",
    "KNOWN_PAYMENT_VALUES",
    "USD_PAYMENT_METHODS",
    "BCV_PAYMENT_METHODS",
    "PAYMENT_CONFIRMED_MARKER",
    "FREE_INSTALLATION_MARKER",
    "PAYMENT_COLUMN_SAMPLE_SIZE",
    "DEFAULT_SELLER_FREE_COMMISSION",
    "DEFAULT_SELLER_PAID_COMMISSION",
    "DEFAULT_INSTALLER_FREE_PERCENTAGE",
    "DEFAULT_INSTALLER_PAID_PERCENTAGE",
    "DEFAULT_PLAN_PRICES",
]
