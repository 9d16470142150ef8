"""Adaptive task orchestration for a team of agents.

Why not Celery / Prefect / a workflow DAG engine?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The problem here is not moving jobs through a broker but deciding, cycle by
cycle, which backlog task goes to which agent. Skill matching, per-agent
capacity, dependency gating, adaptation of task wording and generation of
groundwork tasks all change between planning cycles. A static DAG cannot
express re-planning on every completion, and a broker would add an
operational dependency for what is an in-process, single-machine loop:

- ``engine.Orchestrator`` plans (select, rank, adapt, generate, assign).
- ``coordinator.ExecutionCoordinator`` applies outcomes and the retry policy.
- ``runner.OrchestrationRunner`` owns the single-writer loop and one worker
  thread per agent.
"""
