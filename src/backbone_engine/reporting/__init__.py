from backbone_engine.reporting.briefing import render_action_briefing
from backbone_engine.reporting.manifests import write_run_manifest
from backbone_engine.reporting.storage import ranked_frame, write_csv, write_json, write_markdown

__all__ = ["render_action_briefing", "write_run_manifest", "ranked_frame", "write_csv", "write_json", "write_markdown"]
