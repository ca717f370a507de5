"""SQLite database schema for trips and their location points."""

TRIPS_SCHEMA = """
-- ============================================
-- gpsmeter Trip Database Schema
-- Version: 1.0.0
-- Timestamps are epoch milliseconds
-- ============================================

-- Trips (one row per recorded trip)
CREATE TABLE IF NOT EXISTS trips (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at_ms INTEGER NOT NULL,
    ended_at_ms INTEGER,

    -- Running aggregate, rewritten after every accepted sample
    total_distance_meters REAL NOT NULL DEFAULT 0,
    max_speed_kmh REAL NOT NULL DEFAULT 0,
    avg_speed_kmh REAL NOT NULL DEFAULT 0,

    status TEXT NOT NULL DEFAULT 'active'  -- active, paused, completed
);

-- Location points (each accepted sample)
CREATE TABLE IF NOT EXISTS location_points (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    trip_id INTEGER NOT NULL,
    latitude REAL NOT NULL,
    longitude REAL NOT NULL,
    speed_kmh REAL NOT NULL DEFAULT 0,
    altitude REAL,
    accuracy REAL,
    captured_at_ms INTEGER NOT NULL,

    FOREIGN KEY (trip_id) REFERENCES trips(id) ON DELETE CASCADE
);

-- ============================================
-- Indexes for performance
-- ============================================

CREATE INDEX IF NOT EXISTS idx_points_trip ON location_points(trip_id);
CREATE INDEX IF NOT EXISTS idx_points_time ON location_points(captured_at_ms);
CREATE INDEX IF NOT EXISTS idx_trips_status ON trips(status);
CREATE INDEX IF NOT EXISTS idx_trips_started ON trips(started_at_ms);
"""
