"""
엔진 도메인 에러
- 모두 EngineError 를 상속하고, 라우터 계층에서 code/status_code 로 그대로 응답한다.
- StorageUnavailable 은 도메인 에러가 아니다 (재시도 후에도 저장소가 응답하지 않을 때).
"""


class EngineError(Exception):
    code = "engine_error"
    status_code = 400

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.code
        super().__init__(self.detail)


# ---------- 조회 실패 ----------
class SessionNotFound(EngineError):
    code = "session_not_found"
    status_code = 404


class ParticipantNotFound(EngineError):
    code = "participant_not_found"
    status_code = 404


class ProgressNotFound(EngineError):
    code = "progress_not_found"
    status_code = 404


class ModuleNotFound(EngineError):
    code = "module_not_found"
    status_code = 404


class UserNotFound(EngineError):
    code = "user_not_found"
    status_code = 404


# ---------- 입력 검증 ----------
class InvalidSessionSchedule(EngineError):
    code = "invalid_session_schedule"
    status_code = 400


class InvalidProgressUpdate(EngineError):
    code = "invalid_progress_update"
    status_code = 400


# ---------- 세션 ----------
class InvalidStateTransition(EngineError):
    code = "invalid_state_transition"
    status_code = 409


class SessionNotActive(EngineError):
    code = "session_not_active"
    status_code = 403


class SessionNotModifiable(EngineError):
    code = "session_not_modifiable"
    status_code = 409


class DuplicateModule(EngineError):
    code = "duplicate_module"
    status_code = 409


class DuplicateSessionCode(EngineError):
    code = "duplicate_session_code"
    status_code = 409


# ---------- 참가자 ----------
class SessionFull(EngineError):
    code = "session_full"
    status_code = 409


class DuplicateParticipant(EngineError):
    code = "duplicate_participant"
    status_code = 409


class LinkExpired(EngineError):
    code = "link_expired"
    status_code = 403


class InvalidStatusTransition(EngineError):
    code = "invalid_status_transition"
    status_code = 409


class ParticipantHasProgress(EngineError):
    code = "participant_has_progress"
    status_code = 409


class InactiveUser(EngineError):
    code = "inactive_user"
    status_code = 409


# ---------- 응시 ----------
class AlreadyStarted(EngineError):
    code = "already_started"
    status_code = 409


class LateEntryNotAllowed(EngineError):
    code = "late_entry_not_allowed"
    status_code = 403


class AttemptNotActive(EngineError):
    code = "attempt_not_active"
    status_code = 409


# ---------- 저장소 ----------
class StorageUnavailable(Exception):
    code = "storage_unavailable"
    status_code = 503

    def __init__(self, detail: str | None = None):
        self.detail = detail or "storage temporarily unavailable"
        super().__init__(self.detail)
