"""Ledger configuration."""

from pydantic import BaseModel, Field


class LedgerConfig(BaseModel):
    """
    Ledger-wide defaults.

    Company-specific invoice numbering (prefix, padding) lives in the store
    and overrides the defaults here.
    """

    # Invoice numbering
    invoice_prefix: str = Field(
        default="INV",
        description="Prefix used when a company has no numbering settings",
        min_length=1,
        max_length=20,
    )
    invoice_padding: int = Field(
        default=4,
        description="Zero-padding width of the sequence part",
        ge=1,
        le=12,
    )
    max_number_attempts: int = Field(
        default=5,
        description="How many candidate numbers to try before giving up on a collision",
        ge=1,
        le=50,
    )

    # Invoice defaults
    default_currency: str = Field(
        default="EGP",
        description="ISO 4217 code for invoices created without one",
        min_length=3,
        max_length=3,
    )
    payment_terms_days: int = Field(
        default=30,
        description="Days until due for duplicated invoices",
        ge=0,
        le=365,
    )

    # Listings
    default_page_size: int = Field(default=20, ge=1, le=500)
    max_page_size: int = Field(default=100, ge=1, le=500)
