# app/x402/pricing.py
"""
Price calculation for x402 quotes.

The asset policy is the pricing authority:
1. Look up the policy price (price_amount in price_asset)
2. Convert it to USD using the configured per-symbol rate
3. Re-express it in the symbol the buyer asked to pay with
4. Resolve the recipient (policy pay_to_did, else X402_RECIPIENT_DID)

Configuration is loaded from app/core/config.py:
- X402_ASSET_USD_RATES: USD value of one unit of each payable symbol
- X402_RECIPIENT_DID: Fallback payment recipient
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from app.core.config import settings
from app.x402.exceptions import QuoteIssuanceError
from app.x402.models import AssetPolicy

logger = logging.getLogger(__name__)

# Token amounts are quoted with at most 6 decimal places
AMOUNT_QUANTUM = Decimal("0.000001")


def get_usd_rate(symbol: str, rates: Optional[Dict[str, float]] = None) -> float:
    """
    Get the USD value of one unit of `symbol`.

    Raises:
        QuoteIssuanceError: If no positive rate is configured for the symbol
    """
    table = rates if rates is not None else settings.X402_ASSET_USD_RATES
    rate = table.get(symbol)
    if rate is None or rate <= 0:
        raise QuoteIssuanceError(f"No USD rate configured for asset symbol {symbol}")
    return float(rate)


def format_amount(value: Decimal) -> str:
    """Render a token amount without trailing zeros ("2.5", "10")."""
    quantized = value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)
    text = format(quantized.normalize(), "f")
    return text


def convert_amount(amount: float, from_symbol: str, to_symbol: str) -> Decimal:
    """Convert a token amount between symbols through their USD rates."""
    if from_symbol == to_symbol:
        return Decimal(str(amount))
    from_rate = Decimal(str(get_usd_rate(from_symbol)))
    to_rate = Decimal(str(get_usd_rate(to_symbol)))
    return Decimal(str(amount)) * from_rate / to_rate


def resolve_recipient(policy: AssetPolicy) -> str:
    recipient = policy.pay_to_did or settings.X402_RECIPIENT_DID
    if not recipient:
        raise QuoteIssuanceError(
            f"No payment recipient for asset {policy.asset_id}: "
            "set pay_to_did on the policy or X402_RECIPIENT_DID"
        )
    return recipient


def get_price_quote(policy: AssetPolicy, asset_symbol: str) -> Dict[str, Any]:
    """
    Price an asset for a buyer paying in `asset_symbol`.

    This is the main entry point used by quote issuance.

    Returns:
        Dict containing:
        - amount: str - amount of asset_symbol to pay
        - asset_symbol: str - the symbol being paid
        - price: float - USD value of one unit of asset_symbol
        - size_usd: float - total USD value of the payment
        - recipient: str - DID that receives the payment

    Raises:
        QuoteIssuanceError: If a rate or the recipient is missing
    """
    price = get_usd_rate(asset_symbol)
    policy_rate = get_usd_rate(policy.price_asset)

    amount = convert_amount(policy.price_amount, policy.price_asset, asset_symbol)
    size_usd = round(policy.price_amount * policy_rate, 6)
    recipient = resolve_recipient(policy)

    logger.info(
        f"Priced asset {policy.asset_id}: {policy.price_amount} {policy.price_asset} -> "
        f"{format_amount(amount)} {asset_symbol} (${size_usd:.4f} USD)"
    )

    return {
        "amount": format_amount(amount),
        "asset_symbol": asset_symbol,
        "price": price,
        "size_usd": size_usd,
        "recipient": recipient,
    }
