from economy_engine.reporting.cycle import render_cycle_report, write_cycle_artifacts

__all__ = ["render_cycle_report", "write_cycle_artifacts"]
