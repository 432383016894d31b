"""Raw-unit arithmetic for ledger amounts.

All amounts inside the client are int raw units at the asset's on-ledger
decimal precision (e.g. 5_000_000 == 5 tokens at 6 decimals). No float.
Decimal strings only exist at the wire and display boundaries.
"""

from decimal import Decimal, InvalidOperation


def to_raw(amount: str | int | Decimal, decimals: int) -> int:
    """Scale a decimal amount to raw units: ('5.25', 6) -> 5250000.

    Raises ValueError when the amount has more fractional digits than the asset allows.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal amount: {amount!r}") from e
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} exceeds {decimals} decimals of precision")
    return int(scaled)


def parse_wire_amount(value: str | int, decimals: int) -> int:
    """Parse an inbound amount.

    Integer strings are already raw units; strings containing '.' are
    display amounts and get scaled by the asset decimals.
    """
    if isinstance(value, int):
        return value
    text = value.strip()
    if "." in text:
        return to_raw(text, decimals)
    try:
        return int(text)
    except ValueError as e:
        raise ValueError(f"Not an amount: {value!r}") from e


def raw_to_display(raw: int, decimals: int, symbol: str = "") -> str:
    """Convert raw units to display string: (5250000, 6, 'usd') -> '5.25 usd'."""
    sign = "-" if raw < 0 else ""
    whole, frac = divmod(abs(raw), 10**decimals)
    text = f"{sign}{whole:,}"
    if decimals and frac:
        text += "." + f"{frac:0{decimals}d}".rstrip("0")
    return f"{text} {symbol}" if symbol else text
