"""
Research Proposal Workflow Engine
Blueprint registry.

    proposal_bp         — proposals, endorsements, stage catalog
    progress_report_bp  — progress reports and unit dashboards
    health_bp           — readiness / liveness probes
"""
