SCHEMA_SQL = """
-- Enable pgvector extension for embeddings
CREATE EXTENSION IF NOT EXISTS vector;

-- Aggregation key sources
CREATE TABLE IF NOT EXISTS subjects (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    university_id UUID NOT NULL,
    name TEXT NOT NULL CHECK (btrim(name) <> ''),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

-- Course reviews (columns read by the pipeline)
CREATE TABLE IF NOT EXISTS course_reviews (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    subject_id UUID NOT NULL REFERENCES subjects(id),
    performance_self INTEGER NOT NULL CHECK (performance_self BETWEEN 1 AND 4),
    credit_ease INTEGER NOT NULL,
    class_difficulty INTEGER NOT NULL,
    assignment_load INTEGER NOT NULL,
    attendance_strictness INTEGER NOT NULL,
    satisfaction INTEGER NOT NULL,
    recommendation INTEGER NOT NULL,
    body_main TEXT NOT NULL CHECK (btrim(body_main) <> ''),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS course_review_ai_flags (
    review_id UUID PRIMARY KEY REFERENCES course_reviews(id),
    ai_flagged BOOLEAN NOT NULL DEFAULT false,
    category TEXT,
    severity NUMERIC,
    raw_json JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS embedding_jobs (
    review_id UUID PRIMARY KEY REFERENCES course_reviews(id),
    status TEXT NOT NULL DEFAULT 'queued' CHECK (status IN ('queued', 'processing', 'done', 'failed')),
    attempt_count INTEGER NOT NULL DEFAULT 0 CHECK (attempt_count >= 0),
    last_error TEXT,
    locked_at TIMESTAMPTZ,
    locked_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS course_review_embeddings (
    review_id UUID PRIMARY KEY REFERENCES course_reviews(id),
    embedding VECTOR,
    model TEXT NOT NULL DEFAULT 'text-embedding-3-small',
    content_hash TEXT CHECK (content_hash IS NULL OR content_hash ~ '^[0-9a-f]{64}$'),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS subject_rollups (
    subject_id UUID PRIMARY KEY REFERENCES subjects(id),
    summary_1000 TEXT NOT NULL DEFAULT '',
    review_count INTEGER NOT NULL DEFAULT 0 CHECK (review_count >= 0),
    avg_credit_ease NUMERIC,
    avg_class_difficulty NUMERIC,
    avg_assignment_load NUMERIC,
    avg_attendance_strictness NUMERIC,
    avg_satisfaction NUMERIC,
    avg_recommendation NUMERIC,
    count_performance_unknown INTEGER NOT NULL DEFAULT 0 CHECK (count_performance_unknown >= 0),
    count_no_credit INTEGER NOT NULL DEFAULT 0 CHECK (count_no_credit >= 0),
    count_credit_normal INTEGER NOT NULL DEFAULT 0 CHECK (count_credit_normal >= 0),
    count_credit_high INTEGER NOT NULL DEFAULT 0 CHECK (count_credit_high >= 0),
    last_processed_review_id UUID,
    is_dirty BOOLEAN NOT NULL DEFAULT false,
    last_error TEXT,
    dirtied_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS subject_rollup_embeddings (
    subject_id UUID PRIMARY KEY REFERENCES subject_rollups(subject_id),
    embedding VECTOR,
    model TEXT NOT NULL DEFAULT 'text-embedding-3-small',
    content_hash TEXT NOT NULL CHECK (content_hash ~ '^[0-9a-f]{64}$'),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

-- Company reviews (columns read by the pipeline)
CREATE TABLE IF NOT EXISTS company_reviews (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    university_id UUID NOT NULL,
    faculty TEXT NOT NULL CHECK (btrim(faculty) <> ''),
    company_id UUID NOT NULL,
    outcome TEXT NOT NULL CHECK (outcome IN ('offer', 'rejected', 'other')),
    body_main TEXT NOT NULL CHECK (btrim(body_main) <> ''),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS company_review_ai_flags (
    review_id UUID PRIMARY KEY REFERENCES company_reviews(id),
    ai_flagged BOOLEAN NOT NULL DEFAULT false,
    category TEXT,
    severity NUMERIC,
    raw_json JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS company_embedding_jobs (
    review_id UUID PRIMARY KEY REFERENCES company_reviews(id),
    status TEXT NOT NULL DEFAULT 'queued' CHECK (status IN ('queued', 'processing', 'done', 'failed')),
    attempt_count INTEGER NOT NULL DEFAULT 0 CHECK (attempt_count >= 0),
    last_error TEXT,
    locked_at TIMESTAMPTZ,
    locked_by TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS company_review_embeddings (
    review_id UUID PRIMARY KEY REFERENCES company_reviews(id),
    embedding VECTOR,
    model TEXT NOT NULL DEFAULT 'text-embedding-3-small',
    content_hash TEXT CHECK (content_hash IS NULL OR content_hash ~ '^[0-9a-f]{64}$'),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS company_rollups (
    university_id UUID NOT NULL,
    faculty TEXT NOT NULL CHECK (btrim(faculty) <> ''),
    company_id UUID NOT NULL,
    summary_1000 TEXT NOT NULL DEFAULT '',
    review_count INTEGER NOT NULL DEFAULT 0 CHECK (review_count >= 0),
    count_offer INTEGER NOT NULL DEFAULT 0 CHECK (count_offer >= 0),
    count_rejected INTEGER NOT NULL DEFAULT 0 CHECK (count_rejected >= 0),
    count_other INTEGER NOT NULL DEFAULT 0 CHECK (count_other >= 0),
    last_processed_review_id UUID,
    is_dirty BOOLEAN NOT NULL DEFAULT false,
    last_error TEXT,
    dirtied_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (university_id, faculty, company_id)
);

CREATE TABLE IF NOT EXISTS company_rollup_embeddings (
    university_id UUID NOT NULL,
    faculty TEXT NOT NULL CHECK (btrim(faculty) <> ''),
    company_id UUID NOT NULL,
    embedding VECTOR,
    model TEXT NOT NULL DEFAULT 'text-embedding-3-small',
    content_hash TEXT NOT NULL CHECK (content_hash ~ '^[0-9a-f]{64}$'),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (university_id, faculty, company_id),
    FOREIGN KEY (university_id, faculty, company_id)
        REFERENCES company_rollups(university_id, faculty, company_id)
);

-- Rollup columns added after the first deployment
ALTER TABLE subject_rollups ADD COLUMN IF NOT EXISTS last_error TEXT;
ALTER TABLE company_rollups ADD COLUMN IF NOT EXISTS last_error TEXT;
ALTER TABLE subject_rollups ADD COLUMN IF NOT EXISTS dirtied_at TIMESTAMPTZ;
ALTER TABLE company_rollups ADD COLUMN IF NOT EXISTS dirtied_at TIMESTAMPTZ;

-- Create indexes for performance
CREATE INDEX IF NOT EXISTS idx_embedding_jobs_pickup ON embedding_jobs(status, updated_at);
CREATE INDEX IF NOT EXISTS idx_company_embedding_jobs_pickup ON company_embedding_jobs(status, updated_at);
CREATE INDEX IF NOT EXISTS idx_subject_rollups_dirty ON subject_rollups(updated_at) WHERE is_dirty;
CREATE INDEX IF NOT EXISTS idx_company_rollups_dirty ON company_rollups(updated_at) WHERE is_dirty;
CREATE INDEX IF NOT EXISTS idx_course_reviews_subject ON course_reviews(subject_id, created_at);
CREATE INDEX IF NOT EXISTS idx_company_reviews_key ON company_reviews(university_id, faculty, company_id, created_at);
"""
