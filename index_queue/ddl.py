"""Database schema DDL for the index queue."""

INDEX_QUEUE_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS index_queue_entries (
  id           BIGSERIAL PRIMARY KEY,
  record_type  TEXT NOT NULL,
  record_id    TEXT NOT NULL,
  operation    TEXT NOT NULL CHECK (operation IN ('index', 'delete')),

  priority     INT NOT NULL DEFAULT 0,
  run_at       TIMESTAMPTZ NOT NULL,

  attempts     INT NOT NULL DEFAULT 0 CHECK (attempts >= 0),
  last_error   JSONB,
  claim_token  BIGINT,

  created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at   TIMESTAMPTZ NOT NULL DEFAULT now(),

  CONSTRAINT uq_index_queue_record UNIQUE (record_type, record_id)
);

-- Claim order: most urgent first, then oldest
CREATE INDEX IF NOT EXISTS idx_index_queue_due
ON index_queue_entries (run_at, priority DESC, created_at);

CREATE INDEX IF NOT EXISTS idx_index_queue_type_due
ON index_queue_entries (record_type, run_at);

CREATE INDEX IF NOT EXISTS idx_index_queue_errors
ON index_queue_entries (attempts)
WHERE attempts > 0;
"""
