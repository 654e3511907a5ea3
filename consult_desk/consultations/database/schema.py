"""
Consultation Desk Database Schema
Supports staff calendars, the consultation lifecycle, SMS transport and the
append-only audit trail.
"""

SCHEMA = """
-- =============================================================================
-- 1. USERS - Staff members and system identities
-- =============================================================================
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'clinician' CHECK (role IN ('system', 'admin', 'clinician')),
    can_have_availability INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);


-- =============================================================================
-- 2. PATIENTS - Identified patients (name + date of birth)
-- =============================================================================
CREATE TABLE IF NOT EXISTS patients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    date_of_birth TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (name, date_of_birth)
);

CREATE INDEX IF NOT EXISTS idx_patients_dob ON patients(date_of_birth);


-- =============================================================================
-- 3. CONSULTATION_REQUESTS - Inbound triage messages awaiting a decision
-- =============================================================================
CREATE TABLE IF NOT EXISTS consultation_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phone_number TEXT NOT NULL,
    symptom_text TEXT NOT NULL,

    -- Status: pending, accepted, rejected (accepted/rejected are terminal)
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'accepted', 'rejected')),
    status_actioned_by_user_id INTEGER,
    status_actioned_at TEXT,

    created_at TEXT NOT NULL,

    FOREIGN KEY (status_actioned_by_user_id) REFERENCES users(id)
);

CREATE INDEX IF NOT EXISTS idx_requests_status_created ON consultation_requests(status, created_at);


-- =============================================================================
-- 4. SLOTS - Bookable windows on a staff member's calendar
-- =============================================================================
-- When consultation_id is NULL, the slot is free
CREATE TABLE IF NOT EXISTS slots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_user_id INTEGER NOT NULL,
    start_date_time TEXT NOT NULL,
    end_date_time TEXT NOT NULL,
    consultation_id INTEGER,
    created_at TEXT NOT NULL,

    CHECK (end_date_time > start_date_time),
    FOREIGN KEY (owner_user_id) REFERENCES users(id),
    FOREIGN KEY (consultation_id) REFERENCES consultations(id)
);

CREATE INDEX IF NOT EXISTS idx_slots_owner_start ON slots(owner_user_id, start_date_time);
CREATE INDEX IF NOT EXISTS idx_slots_start ON slots(start_date_time);


-- =============================================================================
-- 5. CONSULTATIONS - Accepted requests bound to a slot
-- =============================================================================
CREATE TABLE IF NOT EXISTS consultations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    consultation_request_id INTEGER NOT NULL UNIQUE,
    assigned_user_id INTEGER NOT NULL,
    slot_id INTEGER NOT NULL UNIQUE,
    patient_id INTEGER,
    created_at TEXT NOT NULL,

    FOREIGN KEY (consultation_request_id) REFERENCES consultation_requests(id),
    FOREIGN KEY (assigned_user_id) REFERENCES users(id),
    FOREIGN KEY (slot_id) REFERENCES slots(id),
    FOREIGN KEY (patient_id) REFERENCES patients(id)
);

CREATE INDEX IF NOT EXISTS idx_consultations_assigned ON consultations(assigned_user_id);
CREATE INDEX IF NOT EXISTS idx_consultations_patient ON consultations(patient_id);


-- =============================================================================
-- 6. CONSULTATION_CALLS - Call attempts and their clinical outcome
-- =============================================================================
CREATE TABLE IF NOT EXISTS consultation_calls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    consultation_id INTEGER NOT NULL,
    conducted_by_user_id INTEGER NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('patient_answered', 'patient_no_answer', 'clinician_did_not_call')),
    patient_id INTEGER,

    -- Outcome (only for patient_answered)
    confirmations TEXT,  -- JSON array
    chief_complaint TEXT,
    review_of_systems TEXT,
    past_medical_history TEXT,
    diagnosis TEXT,
    lab_tests TEXT,
    prescriptions TEXT,
    safety_netting TEXT,
    follow_up TEXT,

    additional_notes TEXT,
    created_at TEXT NOT NULL,

    FOREIGN KEY (consultation_id) REFERENCES consultations(id),
    FOREIGN KEY (conducted_by_user_id) REFERENCES users(id),
    FOREIGN KEY (patient_id) REFERENCES patients(id)
);

CREATE INDEX IF NOT EXISTS idx_calls_consultation ON consultation_calls(consultation_id, created_at);


-- =============================================================================
-- 7. SMS_MESSAGES - Messages that actually went over the wire
-- =============================================================================
CREATE TABLE IF NOT EXISTS sms_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phone_number TEXT NOT NULL,
    body TEXT NOT NULL,
    direction TEXT NOT NULL DEFAULT 'incoming' CHECK (direction IN ('incoming', 'outgoing')),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sms_phone ON sms_messages(phone_number);


-- =============================================================================
-- 8. OUTGOING_SMS_MESSAGES - Outbox handed to the SMS provider
-- =============================================================================
-- body holds the rendered text, never a template reference
CREATE TABLE IF NOT EXISTS outgoing_sms_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    phone_number TEXT NOT NULL,
    body TEXT NOT NULL,
    consultation_id INTEGER,
    sent_by_user_id INTEGER,
    state TEXT NOT NULL DEFAULT 'sending' CHECK (state IN ('sending', 'sent', 'failed')),
    sent_message_id INTEGER UNIQUE,
    created_at TEXT NOT NULL,

    FOREIGN KEY (consultation_id) REFERENCES consultations(id),
    FOREIGN KEY (sent_message_id) REFERENCES sms_messages(id)
);

CREATE INDEX IF NOT EXISTS idx_outgoing_state ON outgoing_sms_messages(state);


-- =============================================================================
-- 9. AUDIT_EVENTS - Append-only record of who changed what
-- =============================================================================
-- actor_user_id NULL marks a system-originated mutation. No foreign keys:
-- entries outlive the entities and users they reference.
CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_timestamp TEXT NOT NULL,
    actor_user_id INTEGER,
    event_type TEXT NOT NULL CHECK (event_type IN ('CREATE', 'UPDATE')),
    entity_type TEXT NOT NULL,
    entity_id INTEGER NOT NULL,
    changed_fields TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_actor_time ON audit_events(actor_user_id, event_timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_events(entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_audit_time ON audit_events(event_timestamp);

CREATE TRIGGER IF NOT EXISTS audit_events_no_update
BEFORE UPDATE ON audit_events
BEGIN
    SELECT RAISE(ABORT, 'audit_events is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_events_no_delete
BEFORE DELETE ON audit_events
BEGIN
    SELECT RAISE(ABORT, 'audit_events is append-only');
END;
"""

# Table name -> entity type recorded in the audit trail
AUDITED_TABLES = {
    "users": "User",
    "patients": "Patient",
    "consultation_requests": "ConsultationRequest",
    "slots": "Slot",
    "consultations": "Consultation",
    "consultation_calls": "ConsultationCall",
    "sms_messages": "SmsMessage",
    "outgoing_sms_messages": "OutgoingSmsMessage",
}
