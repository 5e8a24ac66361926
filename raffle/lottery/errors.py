"""
Raffle exceptions

Every rejected operation leaves the raffle unchanged; the API layer maps
these onto HTTP status codes.
"""


class RaffleError(Exception):
    """Base class for all raffle errors"""
    pass


# ============ Validation ============

class InsufficientFee(RaffleError):
    """Entry value below the entrance fee"""
    def __init__(self, value, entrance_fee):
        self.value = value
        self.entrance_fee = entrance_fee
        super().__init__(f"Sent {value} wei, entrance fee is {entrance_fee} wei")


class RoundNotOpen(RaffleError):
    """Entry attempted while a winner is being calculated"""
    def __init__(self, state):
        self.state = state
        super().__init__(f"Raffle is not open (state={int(state)})")


class UpkeepNotNeeded(RaffleError):
    """Upkeep performed while the eligibility check is false"""
    def __init__(self, balance, num_players, raffle_state):
        self.balance = balance
        self.num_players = num_players
        self.raffle_state = int(raffle_state)
        super().__init__(
            f"Upkeep not needed (balance={balance}, players={num_players}, state={self.raffle_state})"
        )


class PlayerIndexOutOfRange(RaffleError, IndexError):
    """Ledger lookup outside [0, number_of_players)"""
    def __init__(self, index, length):
        self.index = index
        self.length = length
        super().__init__(f"Player index {index} out of range (players={length})")


class NoPlayers(RaffleError):
    """Winner selection attempted against an empty ledger"""
    pass


# ============ Integration ============

class TransferFailed(RaffleError):
    """Payout transfer to the winner did not succeed"""
    def __init__(self, recipient, amount, reason=None):
        self.recipient = recipient
        self.amount = amount
        self.reason = reason
        super().__init__(f"Transfer of {amount} wei to {recipient} failed: {reason}")


class InsufficientBalance(RaffleError):
    """Account cannot cover a transfer or charge"""
    def __init__(self, account, balance, amount):
        self.account = account
        self.balance = balance
        self.amount = amount
        super().__init__(f"{account} holds {balance}, needs {amount}")


# ============ Trust violations ============

class OnlyCoordinatorCanFulfill(RaffleError):
    """Fulfillment from anyone other than the configured coordinator"""
    def __init__(self, have, want):
        self.have = have
        self.want = want
        super().__init__(f"Only coordinator {want} can fulfill, got {have}")


class RoundNotCalculating(RaffleError):
    """Fulfillment delivered while no request is outstanding"""
    pass


class UnknownRequest(RaffleError):
    """Fulfillment for a request id other than the outstanding one"""
    def __init__(self, request_id, expected):
        self.request_id = request_id
        self.expected = expected
        super().__init__(f"Unexpected request id {request_id}, waiting for {expected}")


# ============ Coordinator ============

class InvalidSubscription(RaffleError):
    """Subscription does not exist"""
    def __init__(self, subscription_id):
        self.subscription_id = subscription_id
        super().__init__(f"Subscription {subscription_id} not found")


class InvalidConsumer(RaffleError):
    """Consumer is not registered on the subscription"""
    def __init__(self, subscription_id, consumer):
        self.subscription_id = subscription_id
        self.consumer = consumer
        super().__init__(f"{consumer} is not a consumer of subscription {subscription_id}")


class NonexistentRequest(RaffleError):
    """Request id unknown or already fulfilled"""
    def __init__(self, request_id):
        self.request_id = request_id
        super().__init__(f"Request {request_id} does not exist or was already fulfilled")
