import traceback


class PollPeakError(Exception):
    code = "error"

    def __init__(self, message: str, status_code: int = 400, stack_trace: bool = False):
        self.message = message
        self.status_code = status_code
        self.stack_trace = traceback.format_exc() if stack_trace else None
        super().__init__(self.message)

    def to_dict(self):
        return {"error": self.code, "message": self.message}


class PollNotFound(PollPeakError):
    code = "poll_not_found"

    def __init__(self, poll_id):
        self.poll_id = poll_id
        super().__init__(f"Poll {poll_id} not found", status_code=404)


class PollClosed(PollPeakError):
    code = "poll_closed"

    def __init__(self, poll_id, reason: str = "Poll is not open for voting"):
        self.poll_id = poll_id
        super().__init__(reason, status_code=409)


class InvalidOption(PollPeakError):
    code = "invalid_option"

    def __init__(self, option_index, option_count: int):
        self.option_index = option_index
        super().__init__(
            f"Option {option_index} is out of range (poll has {option_count} options)", status_code=422)


class AlreadyVoted(PollPeakError):
    code = "already_voted"

    def __init__(self, poll_id, user_id):
        super().__init__(
            f"Vote already exists for poll {poll_id} and user {user_id}", status_code=409)


class ProfileNotFound(PollPeakError):
    code = "profile_not_found"

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"Profile {user_id} not found", status_code=404)


class ProfileAlreadyExists(PollPeakError):
    code = "profile_already_exists"

    def __init__(self, user_id):
        super().__init__(f"Profile {user_id} already exists", status_code=409)


class InsufficientFunds(PollPeakError):
    code = "insufficient_funds"

    def __init__(self, user_id, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient points for {user_id}: required {required}, available {available}", status_code=422)


class ContestNotFound(PollPeakError):
    code = "contest_not_found"

    def __init__(self, contest_id):
        self.contest_id = contest_id
        super().__init__(f"Contest {contest_id} not found", status_code=404)


class InvalidContestState(PollPeakError):
    code = "invalid_contest_state"

    def __init__(self, contest_id, current, required):
        self.current = current
        # required is a single phase or a collection of acceptable phases
        if isinstance(required, (list, tuple, set, frozenset)):
            self.required = sorted(_phase_value(r) for r in required)
            required_text = " or ".join(self.required)
        else:
            self.required = _phase_value(required)
            required_text = self.required
        super().__init__(
            f"Contest {contest_id} is {_phase_value(current)}, operation requires {required_text}", status_code=409)


class AlreadyEnrolled(PollPeakError):
    code = "already_enrolled"

    def __init__(self, contest_id, user_id):
        super().__init__(
            f"User {user_id} is already enrolled in contest {contest_id}", status_code=409)


class NotEnrolled(PollPeakError):
    code = "not_enrolled"

    def __init__(self, contest_id, user_id):
        super().__init__(
            f"User {user_id} is not enrolled in contest {contest_id}", status_code=404)


class ScoreAlreadySubmitted(PollPeakError):
    code = "score_already_submitted"

    def __init__(self, contest_id, user_id):
        super().__init__(
            f"Score already submitted by {user_id} for contest {contest_id}", status_code=409)


class AlreadyDisbursed(PollPeakError):
    code = "already_disbursed"

    def __init__(self, contest_id):
        super().__init__(f"Contest {contest_id} was already disbursed", status_code=409)


class IncompletePayoutStructure(PollPeakError):
    code = "incomplete_payout_structure"

    def __init__(self, num_winners: int, defined_ranks):
        self.num_winners = num_winners
        self.defined_ranks = sorted(defined_ranks)
        super().__init__(
            f"Payout structure defines ranks {self.defined_ranks} but contest has {num_winners} winners",
            status_code=422)


class InvalidPayoutStructure(PollPeakError):
    code = "invalid_payout_structure"

    def __init__(self, reason: str):
        super().__init__(f"Invalid payout structure: {reason}", status_code=422)


class StorageContention(PollPeakError):
    code = "storage_contention"

    def __init__(self):
        super().__init__("Too much contention, please retry", status_code=503)


def _phase_value(phase):
    return getattr(phase, "value", phase)
