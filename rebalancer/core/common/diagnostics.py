"""
Shared diagnostics builders for allocation pipelines.
"""

from decimal import Decimal

from rebalancer.core.models import InstrumentWarning, LayerDeltaDiagnostics


def make_layer_delta_diagnostics(*, within_tolerance: bool) -> LayerDeltaDiagnostics:
    return LayerDeltaDiagnostics(
        within_tolerance=within_tolerance,
        suppressed_deltas_count=0,
        suppressed_amount_total=Decimal("0"),
        notes=[],
    )


def record_suppression(diagnostics: LayerDeltaDiagnostics, *, layer: int, amount: Decimal) -> None:
    diagnostics.suppressed_deltas_count += 1
    diagnostics.suppressed_amount_total += abs(amount)
    diagnostics.notes.append(
        f"Layer {layer} delta {amount} below minimum rebalancing amount; suppressed."
    )


def make_layer_warning(*, code: str, layer: int, message: str) -> InstrumentWarning:
    return InstrumentWarning(code=code, layer=layer, message=message)
