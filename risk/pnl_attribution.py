"""
risk/pnl_attribution.py

Decomposes an option trade's gross P&L into Greek components.

Raw contributions come from the average of entry and exit Greeks. They are
then fitted to the realized gross, in this order:
  - gross under a cent: nothing to attribute, all components are zero;
  - raw contributions negligible: the whole gross is price movement (delta);
  - raw sum has the sign of gross and explains it within 10x: scale
    proportionally;
  - otherwise: split gross by each component's share of the absolute raw
    total, so no component exceeds gross or carries the opposite sign.
Rounding residual is carried by delta, so the four always sum to gross.
"""

import math

from contracts.records import Greeks, PnLBreakdown

CONTRACT_MULTIPLIER = 100

MIN_GROSS = 0.01
MIN_RAW = 0.01
# Band of |raw sum| / |gross| inside which proportional scaling is trusted
EXPLAINED_LOW = 0.1
EXPLAINED_HIGH = 10.0

COMPONENTS = ("delta", "gamma", "iv", "theta")


def _average(entry: Greeks, exit_: Greeks) -> Greeks:
    return Greeks(
        delta=(entry.delta + exit_.delta) / 2.0,
        gamma=(entry.gamma + exit_.gamma) / 2.0,
        theta=(entry.theta + exit_.theta) / 2.0,
        vega=(entry.vega + exit_.vega) / 2.0,
        iv=(entry.iv + exit_.iv) / 2.0,
    )


def _finite(x: float) -> float:
    return x if math.isfinite(x) else 0.0


class PnLAttribution:

    def raw_components(
        self,
        entry_greeks: Greeks,
        exit_greeks: Greeks,
        underlying_move: float,
        days_held: float,
        contracts: int
    ):
        avg = _average(entry_greeks, exit_greeks)
        scale = contracts * CONTRACT_MULTIPLIER
        iv_change = exit_greeks.iv - entry_greeks.iv

        return {
            "delta": _finite(avg.delta * underlying_move * scale),
            "gamma": _finite(0.5 * avg.gamma * underlying_move ** 2 * scale),
            # vega is per vol point, iv is a decimal
            "iv": _finite(avg.vega * iv_change * 100.0 * scale),
            "theta": _finite(avg.theta * days_held * scale),
        }

    def fit(self, gross_pnl: float, raw) -> dict:
        """Fit raw Greek contributions to the realized gross."""
        zeros = {k: 0.0 for k in COMPONENTS}
        if abs(gross_pnl) < MIN_GROSS:
            return zeros

        abs_total = sum(abs(v) for v in raw.values())
        if abs_total < MIN_RAW:
            return dict(zeros, delta=gross_pnl)

        raw_sum = sum(raw.values())
        explained = abs(raw_sum) / abs(gross_pnl)
        same_sign = raw_sum * gross_pnl > 0

        if same_sign and EXPLAINED_LOW < explained < EXPLAINED_HIGH:
            ratio = gross_pnl / raw_sum
            parts = {k: round(raw[k] * ratio, 2) for k in COMPONENTS}
        else:
            parts = {k: round(abs(raw[k]) / abs_total * gross_pnl, 2) for k in COMPONENTS}

        parts["delta"] = round(gross_pnl - parts["gamma"] - parts["iv"] - parts["theta"], 10)
        return parts

    def attribute(
        self,
        gross_pnl: float,
        entry_greeks: Greeks,
        exit_greeks: Greeks,
        underlying_move: float,
        days_held: float,
        contracts: int
    ) -> PnLBreakdown:
        raw = self.raw_components(entry_greeks, exit_greeks, underlying_move, days_held, contracts)
        parts = self.fit(gross_pnl, raw)

        return PnLBreakdown(
            delta=parts["delta"],
            iv=parts["iv"],
            theta=parts["theta"],
            gamma=parts["gamma"],
        )
