"""
Delivery IQ — Delivery Intelligence Engine.

Architecture:
    deliveryiq/
    ├── api/             # FastAPI routers (read-only HTTP surface)
    ├── db/              # SQLAlchemy models, engine, keyset-paginated repositories
    ├── engine/          # Pure algorithms (segments, outcomes, Kaplan-Meier, probability)
    ├── middleware/      # Error handling, request context
    ├── schemas/         # Pydantic response models
    └── services/        # Batch jobs, curve resolver, probability service, stats

Data Flow:
    Tracking snapshots → Outcome Classifier → delivery_outcomes
    → Survival Curve Engine (batch) → survival_curves
    → Probability Estimator (on demand) → caller

Module Boundaries:
    - engine/ never touches the database; every function takes `now` explicitly
    - Every full-table scan pages by ascending key, never by offset
    - Survival curves are written only by the curve builder

Version: 1.0.0
"""

__version__ = "1.0.0"
