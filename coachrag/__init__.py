"""Document/conversation engine of the coaching app: API, configuration, data
access, retrieval/generation pipelines, retention and supporting utilities.

Submodules overview:
- main: FastAPI application bootstrap and routes.
- deps: FastAPI dependency wiring (clients, stores, services).
- auth: Bearer-token owner resolution and operator guard.
- config: Application settings and environment variable loading.
- db: Database engine/session management helpers.
- models: ORM models and relationships.
- schemas: Pydantic request/response models for API contracts.
- errors: Exception taxonomy with stable error codes.
- embedding: Embedding client.
- generation: Chat completion client.
- retrieval: Chunk store and vector search.
- assembler: Grounded prompt construction and citations.
- conversations: Sessions and the idempotent message log.
- orchestrator: Query state machine.
- retention: Retention sweeper and its CLI.
- personalization: Coaching-question suggestions.
- collaborators: Profile store and document metadata lookups.
- cache: Redis client and advisory lock.
- ingestion: Offline document ingestion.
- obs: Observability utilities (tracing/spans).
- logging_config: JSON logging setup.
- utils: General-purpose helper functions.
"""
