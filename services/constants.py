# services/constants.py
# Fixed account codes (French PCG) and default export settings, referenced everywhere.

from dataclasses import dataclass, field
from typing import Dict

from kernel.sequence_allocator import NumberingConfig


@dataclass(frozen=True)
class AccountCodes:
    # -------------------
    # Tiers
    # -------------------
    CLIENTS = "411000"

    # -------------------
    # Trésorerie
    # -------------------
    BANQUE = "512000"

    # -------------------
    # TVA collectée
    # -------------------
    TVA_COLLECTEE_20 = "445710"
    TVA_COLLECTEE_5_5 = "445711"
    TVA_COLLECTEE_10 = "445712"
    TVA_COLLECTEE_2_1 = "445713"

    # -------------------
    # Produits
    # -------------------
    VENTES_MARCHANDISES = "707000"


ACCOUNT_LABELS: Dict[str, str] = {
    AccountCodes.CLIENTS: "Clients",
    AccountCodes.BANQUE: "Banque",
    AccountCodes.VENTES_MARCHANDISES: "Ventes de marchandises",
    AccountCodes.TVA_COLLECTEE_20: "TVA collectée 20%",
    AccountCodes.TVA_COLLECTEE_10: "TVA collectée 10%",
    AccountCodes.TVA_COLLECTEE_5_5: "TVA collectée 5.5%",
    AccountCodes.TVA_COLLECTEE_2_1: "TVA collectée 2.1%",
}


def _default_vat_accounts() -> Dict[str, str]:
    # keys are normalized rate text (see core.totals.rate_key)
    return {
        "20": AccountCodes.TVA_COLLECTEE_20,
        "10": AccountCodes.TVA_COLLECTEE_10,
        "5.5": AccountCodes.TVA_COLLECTEE_5_5,
        "2.1": AccountCodes.TVA_COLLECTEE_2_1,
    }


@dataclass(frozen=True)
class FecConfig:
    customer_account: str = AccountCodes.CLIENTS
    customer_label: str = ACCOUNT_LABELS[AccountCodes.CLIENTS]
    sales_account: str = AccountCodes.VENTES_MARCHANDISES
    sales_label: str = ACCOUNT_LABELS[AccountCodes.VENTES_MARCHANDISES]
    vat_accounts: Dict[str, str] = field(default_factory=_default_vat_accounts)
    vat_fallback_account: str = AccountCodes.TVA_COLLECTEE_20
    journal_code: str = "VT"
    journal_label: str = "Ventes"
    bank_account: str = AccountCodes.BANQUE
    bank_label: str = ACCOUNT_LABELS[AccountCodes.BANQUE]
    bank_journal_code: str = "BQ"
    bank_journal_label: str = "Banque"
    include_payments: bool = False
