from typing import NamedTuple

from hathor import (
    Address,
    Amount,
    Blueprint,
    Context,
    NCDepositAction,
    NCFail,
    NCWithdrawalAction,
    Timestamp,
    TokenUid,
    export,
    public,
    view,
)

# Constants
NFT_AMOUNT: int = 1  # An NFT is a single unit of its token
MAX_FREEZE_CYCLES: int = 2
DEFAULT_MAX_COMPUTE_PERIOD: int = 2_500
SLOT_INDEX_BYTES: int = 8


class Unauthorized(NCFail):
    pass


class InvalidInput(NCFail):
    pass


class InvalidAmount(NCFail):
    pass


class InvalidActions(NCFail):
    pass


class InvalidState(NCFail):
    pass


class InvalidTime(NCFail):
    pass


class AlreadyStaked(NCFail):
    pass


class NotStaked(NCFail):
    pass


class StillFrozen(NCFail):
    pass


class SameCycleRestake(NCFail):
    pass


class PeriodLimitExceeded(NCFail):
    pass


class NothingToClaim(NCFail):
    pass


class InsufficientPool(NCFail):
    pass


class InsufficientBalance(NCFail):
    pass


class AlreadyGranted(NCFail):
    pass


class StakeRecord(NamedTuple):
    """Stake of one asset by one staker. `unstaked_at_cycle` is 0 until withdrawn."""

    staker: Address
    asset_id: TokenUid
    staked_at_cycle: int
    unstaked_at_cycle: int
    is_active: bool


class Snapshot(NamedTuple):
    """Inclusive cycle span during which an asset stayed staked.

    An open snapshot is still running; its `end_cycle` is not meaningful
    until the asset is withdrawn.
    """

    start_cycle: int
    end_cycle: int
    is_open: bool


class HistoryBounds(NamedTuple):
    """Slot range of a snapshot history: `head` is the oldest unclaimed slot,
    `tail` is one past the newest."""

    head: int
    tail: int


class Claim(NamedTuple):
    """Rewards owed over `periods` consecutive periods starting at `start_period`."""

    start_period: int
    periods: int
    amount: int


class StakingConfig(NamedTuple):
    owner_address: str  # hex-encoded
    white_listed_asset_source: str  # hex-encoded
    rewards_token: str  # hex-encoded
    cycle_length_in_seconds: int
    period_length_in_cycles: int
    freeze_cycles: int
    max_compute_period: int


class StakingPoolInfo(NamedTuple):
    total_rewards_pool: int
    total_rewards_deposited: int
    total_rewards_credited: int
    total_rewards_withdrawn: int
    number_of_staked_nfts: int
    is_started: bool
    start_timestamp: int
    paused: bool


class StakeInfo(NamedTuple):
    staked_at_cycle: int
    unstaked_at_cycle: int
    is_active: bool
    claim_cursor: int
    pending_snapshots: int


class StakedNft(NamedTuple):
    asset_id: str  # hex-encoded
    info: StakeInfo


def get_cycle(timestamp: int, start_timestamp: int, cycle_length_in_seconds: int) -> int:
    """Return the 1-indexed cycle containing `timestamp`."""
    if timestamp < start_timestamp:
        raise InvalidTime("Timestamp precedes contract start")
    return (timestamp - start_timestamp) // cycle_length_in_seconds + 1


def get_period(cycle: int, period_length_in_cycles: int) -> int:
    """Return the 1-indexed period containing `cycle`."""
    if cycle < 1:
        raise InvalidInput("Cycle must be positive")
    return (cycle - 1) // period_length_in_cycles + 1


def period_first_cycle(period: int, period_length_in_cycles: int) -> int:
    return (period - 1) * period_length_in_cycles + 1


def period_last_cycle(period: int, period_length_in_cycles: int) -> int:
    return period * period_length_in_cycles


def stake_key(staker: bytes, asset_id: bytes) -> bytes:
    """Storage key of the stake stream of one staker and one asset."""
    return bytes(staker) + bytes(asset_id)


@export
class NFTStaking(Blueprint):
    """NFT staking blueprint paying a fungible reward token per staked cycle.

    Time is split in cycles of `cycle_length_in_seconds`, and cycles are grouped
    in periods of `period_length_in_cycles`. Rewards accrue per cycle an NFT
    stays staked and are settled per period, once the period has elapsed.

    The life cycle of contracts using this blueprint is the following:

    1. [Owner] Create the contract with the time units, the custody source and
       the rewards token.
    2. [Owner or grantee] `set_reward_for_period(...)`, `deposit_rewards()` and
       `start()`. The owner hands these rights out with `grant(...)`.
    3. [Custody source] `stake_nft(...)` when a staker hands over an NFT.
    4. [Staker] `claim_rewards(...)` and `withdraw_rewards()`.
    5. [Staker] `unstake_nft(...)`.
    """

    # Configuration
    owner_address: bytes
    white_listed_asset_source: bytes
    rewards_token: TokenUid
    cycle_length_in_seconds: int
    period_length_in_cycles: int
    freeze_cycles: int
    max_compute_period: int

    # Lifecycle
    is_started: bool
    start_timestamp: Timestamp
    paused: bool

    # Rewards schedule, sparse by period
    reward_schedule: dict[int, Amount]
    schedule_periods: dict[int, int]  # sorted position -> explicit period
    schedule_size: int

    # Rewards pool
    total_rewards_pool: Amount
    total_rewards_deposited: Amount
    total_rewards_credited: Amount
    total_rewards_withdrawn: Amount

    # Stakes
    stakes: dict[bytes, StakeRecord]
    asset_stakers: dict[TokenUid, Address]
    number_of_staked_nfts: int

    # Snapshot histories, one slot per snapshot
    history_bounds: dict[bytes, HistoryBounds]
    snapshots: dict[bytes, Snapshot]

    # Claims
    claim_cursors: dict[bytes, int]  # last fully claimed period
    reward_balances: dict[Address, Amount]

    # Staked assets per staker, one slot per asset
    staker_nft_counts: dict[Address, int]
    staker_nfts: dict[bytes, TokenUid]
    staker_nft_slots: dict[bytes, int]  # stake key -> slot index

    # Delegated owner rights, 0 never expires
    grants: dict[Address, Timestamp]
    grant_log: list[Address]  # every grant, revoked ones included

    @public
    def initialize(
        self,
        ctx: Context,
        cycle_length_in_seconds: int,
        period_length_in_cycles: int,
        white_listed_asset_source: bytes,
        rewards_token: TokenUid,
        freeze_cycles: int,
    ) -> None:
        if cycle_length_in_seconds < 1:
            raise InvalidInput("Cycle length must be positive")
        if period_length_in_cycles < 1:
            raise InvalidInput("Period length must be positive")
        if not 0 <= freeze_cycles <= MAX_FREEZE_CYCLES:
            raise InvalidInput(f"Freeze cycles must be between 0 and {MAX_FREEZE_CYCLES}")

        self.owner_address = ctx.caller_id
        self.white_listed_asset_source = white_listed_asset_source
        self.rewards_token = rewards_token
        self.cycle_length_in_seconds = cycle_length_in_seconds
        self.period_length_in_cycles = period_length_in_cycles
        self.freeze_cycles = freeze_cycles
        self.max_compute_period = DEFAULT_MAX_COMPUTE_PERIOD

        self.is_started = False
        self.start_timestamp = Timestamp(0)
        self.paused = False

        self.reward_schedule = {}
        self.schedule_periods = {}
        self.schedule_size = 0

        self.total_rewards_pool = Amount(0)
        self.total_rewards_deposited = Amount(0)
        self.total_rewards_credited = Amount(0)
        self.total_rewards_withdrawn = Amount(0)

        self.stakes = {}
        self.asset_stakers = {}
        self.number_of_staked_nfts = 0

        self.history_bounds = {}
        self.snapshots = {}

        self.claim_cursors = {}
        self.reward_balances = {}

        self.staker_nft_counts = {}
        self.staker_nfts = {}
        self.staker_nft_slots = {}

        self.grants = {}
        self.grant_log = []

    def _validate_state(self) -> None:
        """Validate contract state invariants"""
        assert self.total_rewards_pool >= 0, "Invalid rewards pool"
        assert (
            self.total_rewards_pool
            == self.total_rewards_deposited
            - self.total_rewards_credited
            - self.total_rewards_withdrawn
        ), "Rewards pool out of balance"
        assert self.number_of_staked_nfts >= 0, "Invalid number of staked NFTs"

    def _only_owner(self, ctx: Context) -> None:
        if ctx.caller_id != self.owner_address:
            raise Unauthorized("Only owner can call this method")

    def _only_owner_or_granted(self, ctx: Context) -> None:
        if ctx.caller_id == self.owner_address:
            return
        address = Address(ctx.caller_id)
        if address in self.grants:
            expires = self.grants[address]
            if expires == 0 or ctx.block.timestamp < expires:
                return
        raise Unauthorized("Only owner or granted address can call this method")

    def _require_started(self) -> None:
        if not self.is_started:
            raise InvalidState("Contract not started")

    def _require_not_paused(self) -> None:
        if self.paused:
            raise InvalidState("Contract is paused")

    def _get_single_deposit_action(
        self, ctx: Context, token_uid: TokenUid
    ) -> NCDepositAction:
        """Get a single deposit action for the specified token."""
        if set(ctx.actions.keys()) != {token_uid}:
            raise InvalidActions("Expected a single token action")
        action = ctx.get_single_action(token_uid)
        if not isinstance(action, NCDepositAction):
            raise InvalidActions("Expected deposit action")
        return action

    def _get_single_withdrawal_action(
        self, ctx: Context, token_uid: TokenUid
    ) -> NCWithdrawalAction:
        """Get a single withdrawal action for the specified token."""
        if set(ctx.actions.keys()) != {token_uid}:
            raise InvalidActions("Expected a single token action")
        action = ctx.get_single_action(token_uid)
        if not isinstance(action, NCWithdrawalAction):
            raise InvalidActions("Expected withdrawal action")
        return action

    # Time

    def _cycle_at(self, timestamp: int) -> int:
        self._require_started()
        return get_cycle(timestamp, self.start_timestamp, self.cycle_length_in_seconds)

    def _period_of(self, cycle: int) -> int:
        return get_period(cycle, self.period_length_in_cycles)

    def _current_cycle(self, ctx: Context) -> int:
        return self._cycle_at(int(ctx.block.timestamp))

    # Rewards schedule

    def _schedule_position(self, period: int) -> int:
        """Position of the last explicit entry at or before `period`, -1 if none."""
        low = 0
        high = self.schedule_size - 1
        found = -1
        while low <= high:
            middle = (low + high) // 2
            if self.schedule_periods[middle] <= period:
                found = middle
                low = middle + 1
            else:
                high = middle - 1
        return found

    def _reward_for_period(self, period: int) -> int:
        position = self._schedule_position(period)
        if position < 0:
            return 0
        return self.reward_schedule[self.schedule_periods[position]]

    def _insert_schedule_period(self, period: int) -> None:
        position = self._schedule_position(period) + 1
        for index in range(self.schedule_size, position, -1):
            self.schedule_periods[index] = self.schedule_periods[index - 1]
        self.schedule_periods[position] = period
        self.schedule_size += 1

    @public
    def set_reward_for_period(
        self, ctx: Context, period: int, reward_per_cycle: int
    ) -> None:
        """Set the reward per cycle from `period` on, until a later entry overrides it.

        Applies to every period not yet claimed, elapsed or not.
        """
        self._only_owner_or_granted(ctx)
        if period < 1:
            raise InvalidInput("Period must be positive")
        if reward_per_cycle < 0:
            raise InvalidInput("Reward per cycle cannot be negative")

        if period not in self.reward_schedule:
            self._insert_schedule_period(period)
        self.reward_schedule[period] = Amount(reward_per_cycle)
        self.log.info(
            "reward schedule updated",
            period=period,
            reward_per_cycle=reward_per_cycle,
        )

    @public(allow_deposit=True)
    def deposit_rewards(self, ctx: Context) -> None:
        self._only_owner_or_granted(ctx)
        action = self._get_single_deposit_action(ctx, self.rewards_token)
        amount = action.amount
        if amount <= 0:
            raise InvalidAmount("Deposit amount must be positive")

        self.total_rewards_pool = Amount(self.total_rewards_pool + amount)
        self.total_rewards_deposited = Amount(self.total_rewards_deposited + amount)
        self.log.info("rewards deposited", amount=amount, pool=self.total_rewards_pool)
        self._validate_state()

    @public(allow_withdrawal=True)
    def withdraw_rewards_pool(self, ctx: Context) -> None:
        self._only_owner_or_granted(ctx)
        action = self._get_single_withdrawal_action(ctx, self.rewards_token)
        amount = action.amount
        if amount > self.total_rewards_pool:
            raise InsufficientPool("Insufficient rewards pool")

        self.total_rewards_pool = Amount(self.total_rewards_pool - amount)
        self.total_rewards_withdrawn = Amount(self.total_rewards_withdrawn + amount)
        self.log.info("rewards pool withdrawn", amount=amount, pool=self.total_rewards_pool)
        self._validate_state()

    # Snapshot history

    def _slot_key(self, key: bytes, index: int) -> bytes:
        return key + index.to_bytes(SLOT_INDEX_BYTES, "big")

    def _history_bounds(self, key: bytes) -> HistoryBounds:
        if key in self.history_bounds:
            return self.history_bounds[key]
        return HistoryBounds(head=0, tail=0)

    def _history_on_deposit(self, key: bytes, current_cycle: int) -> None:
        """Open a snapshot starting at `current_cycle`."""
        bounds = self._history_bounds(key)
        if bounds.tail > bounds.head:
            last = self.snapshots[self._slot_key(key, bounds.tail - 1)]
            if last.is_open:
                raise AlreadyStaked("Asset already staked")
            assert last.end_cycle < current_cycle, "Snapshots must not overlap"

        self.snapshots[self._slot_key(key, bounds.tail)] = Snapshot(
            start_cycle=current_cycle,
            end_cycle=current_cycle,
            is_open=True,
        )
        self.history_bounds[key] = bounds._replace(tail=bounds.tail + 1)

    def _history_on_withdraw(self, key: bytes, current_cycle: int) -> None:
        """Close the open snapshot on the cycle before `current_cycle`.

        A snapshot opened in the withdrawal cycle never covered a full cycle
        and is dropped.
        """
        bounds = self._history_bounds(key)
        if bounds.tail == bounds.head:
            raise NotStaked("Asset not staked")
        slot = self._slot_key(key, bounds.tail - 1)
        last = self.snapshots[slot]
        if not last.is_open:
            raise NotStaked("Asset not staked")

        end_cycle = current_cycle - 1
        if end_cycle < last.start_cycle:
            del self.snapshots[slot]
            self.history_bounds[key] = bounds._replace(tail=bounds.tail - 1)
        else:
            self.snapshots[slot] = last._replace(end_cycle=end_cycle, is_open=False)

    def _prune_history(self, key: bytes, through_period: int) -> None:
        """Drop snapshots fully covered by periods up to `through_period`
        and truncate the one running past it."""
        last_claimed_cycle = period_last_cycle(through_period, self.period_length_in_cycles)
        bounds = self._history_bounds(key)
        head = bounds.head
        while head < bounds.tail:
            slot = self._slot_key(key, head)
            snapshot = self.snapshots[slot]
            if snapshot.start_cycle > last_claimed_cycle:
                break
            if not snapshot.is_open and snapshot.end_cycle <= last_claimed_cycle:
                del self.snapshots[slot]
                head += 1
                continue
            next_cycle = last_claimed_cycle + 1
            if snapshot.is_open:
                self.snapshots[slot] = Snapshot(next_cycle, next_cycle, True)
            else:
                self.snapshots[slot] = snapshot._replace(start_cycle=next_cycle)
            break
        self.history_bounds[key] = bounds._replace(head=head)

    def _read_history(self, key: bytes) -> list[Snapshot]:
        bounds = self._history_bounds(key)
        return [
            self.snapshots[self._slot_key(key, index)]
            for index in range(bounds.head, bounds.tail)
        ]

    # Stakes

    def _check_can_stake(self, key: bytes, asset_id: TokenUid, current_cycle: int) -> None:
        if key in self.stakes:
            previous = self.stakes[key]
            if previous.is_active:
                raise AlreadyStaked("Asset already staked")
            if previous.unstaked_at_cycle == current_cycle:
                raise SameCycleRestake("Cannot re-stake in the cycle of withdrawal")
        if asset_id in self.asset_stakers:
            raise AlreadyStaked("Asset staked by another address")

    def _check_freeze(self, stake: StakeRecord, current_cycle: int) -> None:
        if current_cycle - stake.staked_at_cycle < self.freeze_cycles:
            raise StillFrozen(
                f"Asset frozen until cycle {stake.staked_at_cycle + self.freeze_cycles}"
            )

    def _open_claim_cursor(self, key: bytes, current_cycle: int) -> None:
        bounds = self._history_bounds(key)
        floor = self._period_of(current_cycle) - 1
        if key not in self.claim_cursors:
            self.claim_cursors[key] = floor
        elif bounds.tail == bounds.head and self.claim_cursors[key] < floor:
            self.claim_cursors[key] = floor

    def _staker_slot_key(self, staker: Address, index: int) -> bytes:
        return bytes(staker) + index.to_bytes(SLOT_INDEX_BYTES, "big")

    def _index_staker_nft(self, staker: Address, asset_id: TokenUid) -> None:
        count = self.staker_nft_counts.get(staker, 0)
        self.staker_nfts[self._staker_slot_key(staker, count)] = asset_id
        self.staker_nft_slots[stake_key(staker, asset_id)] = count
        self.staker_nft_counts[staker] = count + 1

    def _unindex_staker_nft(self, staker: Address, asset_id: TokenUid) -> None:
        """Remove `asset_id` from the staker's slots, moving the last slot into its place."""
        key = stake_key(staker, asset_id)
        index = self.staker_nft_slots[key]
        last = self.staker_nft_counts[staker] - 1
        if index != last:
            moved = self.staker_nfts[self._staker_slot_key(staker, last)]
            self.staker_nfts[self._staker_slot_key(staker, index)] = moved
            self.staker_nft_slots[stake_key(staker, moved)] = index
        del self.staker_nfts[self._staker_slot_key(staker, last)]
        del self.staker_nft_slots[key]
        if last == 0:
            del self.staker_nft_counts[staker]
        else:
            self.staker_nft_counts[staker] = last

    @public(allow_deposit=True)
    def stake_nft(self, ctx: Context, staker: Address, asset_id: TokenUid) -> None:
        """Deposit notification from the custody source for an NFT of `staker`."""
        self._require_started()
        self._require_not_paused()
        if ctx.caller_id != self.white_listed_asset_source:
            raise InvalidInput("Deposit from a non-whitelisted source")
        if asset_id == self.rewards_token:
            raise InvalidInput("Rewards token cannot be staked")
        action = self._get_single_deposit_action(ctx, asset_id)
        if action.amount != NFT_AMOUNT:
            raise InvalidActions("Expected a single NFT unit")

        current_cycle = self._current_cycle(ctx)
        key = stake_key(staker, asset_id)
        self._check_can_stake(key, asset_id, current_cycle)

        self._open_claim_cursor(key, current_cycle)
        self._history_on_deposit(key, current_cycle)
        self.stakes[key] = StakeRecord(
            staker=staker,
            asset_id=asset_id,
            staked_at_cycle=current_cycle,
            unstaked_at_cycle=0,
            is_active=True,
        )
        self.asset_stakers[asset_id] = staker
        self._index_staker_nft(staker, asset_id)
        self.number_of_staked_nfts += 1
        self.log.info(
            "nft staked",
            staker=staker.hex(),
            asset_id=asset_id.hex(),
            cycle=current_cycle,
        )
        self._validate_state()

    @public(allow_withdrawal=True)
    def unstake_nft(
        self, ctx: Context, asset_id: TokenUid, recipient: Address | None
    ) -> None:
        """Return a staked NFT to its staker.

        Elapsed rewards are settled to `recipient` (the staker by default) in
        one bounded pass if the pool covers them, otherwise they stay
        claimable. While paused this is an emergency exit: no freeze window
        and no settlement.
        """
        self._require_started()
        staker = Address(ctx.caller_id)
        key = stake_key(staker, asset_id)
        if key not in self.stakes or not self.stakes[key].is_active:
            raise NotStaked("Asset not staked by caller")
        action = self._get_single_withdrawal_action(ctx, asset_id)
        if action.amount != NFT_AMOUNT:
            raise InvalidActions("Expected a single NFT unit")

        current_cycle = self._current_cycle(ctx)
        stake = self.stakes[key]
        if not self.paused:
            self._check_freeze(stake, current_cycle)

        self.stakes[key] = stake._replace(
            unstaked_at_cycle=current_cycle, is_active=False
        )
        del self.asset_stakers[asset_id]
        self._unindex_staker_nft(staker, asset_id)
        self.number_of_staked_nfts -= 1
        self._history_on_withdraw(key, current_cycle)

        settled = 0
        if not self.paused:
            settled = self._settle_elapsed(
                key, self._period_of(current_cycle), recipient or staker
            )
        self.log.info(
            "nft unstaked",
            staker=staker.hex(),
            asset_id=asset_id.hex(),
            cycle=current_cycle,
            settled=settled,
        )
        self._validate_state()

    # Claims

    def _claim_window(self, key: bytes, periods: int, current_period: int) -> tuple[int, int]:
        """First and last claimable period; the window is empty when last < first."""
        if periods > self.max_compute_period:
            raise PeriodLimitExceeded(
                f"Requested {periods} periods, max is {self.max_compute_period}"
            )
        if periods < 1:
            raise InvalidInput("Periods must be positive")
        if key not in self.claim_cursors:
            raise NotStaked("No stake history for this asset")

        cursor = self.claim_cursors[key]
        # The current period is still elapsing and is never claimable
        return cursor + 1, min(current_period - 1, cursor + periods)

    def _compute_rewards(self, key: bytes, start_period: int, end_period: int) -> Claim:
        """Rewards owed over `start_period..end_period`, without changing state."""
        period_length = self.period_length_in_cycles
        bounds = self._history_bounds(key)
        index = bounds.head
        snapshot = self.snapshots[self._slot_key(key, index)] if index < bounds.tail else None
        position = self._schedule_position(start_period)
        amount = 0

        for period in range(start_period, end_period + 1):
            while (
                position + 1 < self.schedule_size
                and self.schedule_periods[position + 1] <= period
            ):
                position += 1
            reward_per_cycle = (
                self.reward_schedule[self.schedule_periods[position]] if position >= 0 else 0
            )

            first_cycle = period_first_cycle(period, period_length)
            last_cycle = period_last_cycle(period, period_length)
            staked_cycles = 0
            while snapshot is not None and snapshot.start_cycle <= last_cycle:
                end_cycle = last_cycle if snapshot.is_open else min(snapshot.end_cycle, last_cycle)
                overlap = end_cycle - max(snapshot.start_cycle, first_cycle) + 1
                if overlap > 0:
                    staked_cycles += overlap
                if snapshot.is_open or snapshot.end_cycle > last_cycle:
                    break
                index += 1
                snapshot = self.snapshots[self._slot_key(key, index)] if index < bounds.tail else None

            amount += staked_cycles * reward_per_cycle

        return Claim(
            start_period=start_period,
            periods=max(0, end_period - start_period + 1),
            amount=amount,
        )

    def _settle_claim(self, key: bytes, claim: Claim, recipient: Address) -> None:
        if claim.amount > self.total_rewards_pool:
            raise InsufficientPool(
                f"Rewards pool holds {self.total_rewards_pool}, claim is {claim.amount}"
            )

        last_period = claim.start_period + claim.periods - 1
        assert last_period > self.claim_cursors[key], "Claim cursor only moves forward"
        self.claim_cursors[key] = last_period
        self._prune_history(key, last_period)

        self.total_rewards_pool = Amount(self.total_rewards_pool - claim.amount)
        self.total_rewards_credited = Amount(self.total_rewards_credited + claim.amount)
        if claim.amount > 0:
            self.reward_balances[recipient] = Amount(
                self.reward_balances.get(recipient, 0) + claim.amount
            )

    def _settle_elapsed(self, key: bytes, current_period: int, recipient: Address) -> int:
        start_period, end_period = self._claim_window(
            key, self.max_compute_period, current_period
        )
        if end_period < start_period:
            return 0
        claim = self._compute_rewards(key, start_period, end_period)
        if claim.amount > self.total_rewards_pool:
            return 0
        self._settle_claim(key, claim, recipient)
        return claim.amount

    @public
    def claim_rewards(
        self, ctx: Context, asset_id: TokenUid, periods: int, recipient: Address | None
    ) -> None:
        """Claim rewards for up to `periods` elapsed periods after the last claim.

        The amount is credited to `recipient` (the staker by default), who
        takes it out of custody with `withdraw_rewards()`.
        """
        self._require_started()
        self._require_not_paused()
        staker = Address(ctx.caller_id)
        key = stake_key(staker, asset_id)
        current_period = self._period_of(self._current_cycle(ctx))

        start_period, end_period = self._claim_window(key, periods, current_period)
        if end_period < start_period:
            raise NothingToClaim("No elapsed period to claim")

        claim = self._compute_rewards(key, start_period, end_period)
        beneficiary = recipient or staker
        self._settle_claim(key, claim, beneficiary)
        self.log.info(
            "rewards claimed",
            staker=staker.hex(),
            asset_id=asset_id.hex(),
            start_period=claim.start_period,
            periods=claim.periods,
            amount=claim.amount,
            recipient=beneficiary.hex(),
        )
        self._validate_state()

    @public(allow_withdrawal=True)
    def withdraw_rewards(self, ctx: Context) -> None:
        address = Address(ctx.caller_id)
        action = self._get_single_withdrawal_action(ctx, self.rewards_token)
        balance = self.reward_balances.get(address, 0)
        if action.amount > balance:
            raise InsufficientBalance("Insufficient reward balance")

        remaining = balance - action.amount
        if remaining == 0:
            del self.reward_balances[address]
        else:
            self.reward_balances[address] = Amount(remaining)
        self.log.info("rewards withdrawn", address=address.hex(), amount=action.amount)
        self._validate_state()

    # Owner operations

    @public
    def start(self, ctx: Context) -> None:
        """Start counting cycles from the current block time."""
        self._only_owner_or_granted(ctx)
        if self.is_started:
            raise InvalidState("Already started")
        self.start_timestamp = Timestamp(ctx.block.timestamp)
        self.is_started = True
        self.log.info("staking started", start_timestamp=self.start_timestamp)

    @public
    def pause(self, ctx: Context) -> None:
        """Emergency pause functionality"""
        self._only_owner_or_granted(ctx)
        self.paused = True
        self.log.info("staking paused")

    @public
    def unpause(self, ctx: Context) -> None:
        self._only_owner_or_granted(ctx)
        if not self.paused:
            raise InvalidState("Contract is not paused")
        self.paused = False
        self.log.info("staking unpaused")

    @public
    def set_max_compute_period(self, ctx: Context, max_compute_period: int) -> None:
        self._only_owner_or_granted(ctx)
        if max_compute_period < 1:
            raise InvalidInput("Max compute period must be positive")
        self.max_compute_period = max_compute_period

    @public
    def set_white_listed_asset_source(self, ctx: Context, source: bytes) -> None:
        """Change the caller allowed to notify NFT deposits."""
        self._only_owner_or_granted(ctx)
        if len(source) == 0:
            raise InvalidInput("Asset source cannot be empty")
        self.white_listed_asset_source = source
        self.log.info("asset source updated", source=source.hex())

    @public
    def grant(self, ctx: Context, address: Address, expires: Timestamp) -> None:
        """Give `address` the owner rights of every command but grant and revoke.

        The grant lapses at `expires`, or never when `expires` is 0.
        """
        self._only_owner(ctx)
        if address in self.grants:
            raise AlreadyGranted("Address already granted")
        if expires < 0:
            raise InvalidInput("Expiry cannot be negative")
        self.grants[address] = expires
        self.grant_log.append(address)
        self.log.info("owner rights granted", address=address.hex(), expires=expires)

    @public
    def revoke(self, ctx: Context, address: Address) -> None:
        self._only_owner(ctx)
        if address not in self.grants:
            raise InvalidInput("Address not granted")
        del self.grants[address]
        self.log.info("owner rights revoked", address=address.hex())

    # Views

    @view
    def estimate_rewards(
        self, staker: Address, asset_id: TokenUid, periods: int, timestamp: Timestamp
    ) -> Claim:
        """Rewards a claim at `timestamp` would yield. Pool balance is not checked."""
        key = stake_key(staker, asset_id)
        current_period = self._period_of(self._cycle_at(int(timestamp)))
        start_period, end_period = self._claim_window(key, periods, current_period)
        if end_period < start_period:
            return Claim(start_period=start_period, periods=0, amount=0)
        return self._compute_rewards(key, start_period, end_period)

    @view
    def get_current_cycle(self, timestamp: Timestamp) -> int:
        return self._cycle_at(int(timestamp))

    @view
    def get_current_period(self, timestamp: Timestamp) -> int:
        return self._period_of(self._cycle_at(int(timestamp)))

    @view
    def get_reward_for_period(self, period: int) -> int:
        return self._reward_for_period(period)

    @view
    def get_rewards_schedule(self) -> dict[int, int]:
        """Explicitly set entries, by period."""
        return {
            self.schedule_periods[position]: self.reward_schedule[self.schedule_periods[position]]
            for position in range(self.schedule_size)
        }

    @view
    def get_staker_history(self, staker: Address, asset_id: TokenUid) -> list[Snapshot]:
        return self._read_history(stake_key(staker, asset_id))

    def _stake_info(self, key: bytes) -> StakeInfo:
        if key not in self.stakes:
            return StakeInfo(
                staked_at_cycle=0,
                unstaked_at_cycle=0,
                is_active=False,
                claim_cursor=0,
                pending_snapshots=0,
            )
        stake = self.stakes[key]
        bounds = self._history_bounds(key)
        return StakeInfo(
            staked_at_cycle=stake.staked_at_cycle,
            unstaked_at_cycle=stake.unstaked_at_cycle,
            is_active=stake.is_active,
            claim_cursor=self.claim_cursors.get(key, 0),
            pending_snapshots=bounds.tail - bounds.head,
        )

    @view
    def get_stake_info(self, staker: Address, asset_id: TokenUid) -> StakeInfo:
        return self._stake_info(stake_key(staker, asset_id))

    @view
    def get_staked_nfts(self, staker: Address) -> list[StakedNft]:
        """Assets currently staked by `staker`."""
        staked = []
        for index in range(self.staker_nft_counts.get(staker, 0)):
            asset_id = self.staker_nfts[self._staker_slot_key(staker, index)]
            staked.append(
                StakedNft(
                    asset_id=asset_id.hex(),
                    info=self._stake_info(stake_key(staker, asset_id)),
                )
            )
        return staked

    @view
    def get_grants(self) -> dict[str, int]:
        """Granted addresses, hex-encoded, with their expiry timestamp."""
        grants: dict[str, int] = {}
        for address in self.grant_log:
            if address in self.grants:
                grants[address.hex()] = self.grants[address]
        return grants

    @view
    def get_claim_cursor(self, staker: Address, asset_id: TokenUid) -> int:
        return self.claim_cursors.get(stake_key(staker, asset_id), 0)

    @view
    def get_reward_balance(self, address: Address) -> int:
        return self.reward_balances.get(address, 0)

    @view
    def get_asset_staker(self, asset_id: TokenUid) -> str:
        if asset_id not in self.asset_stakers:
            return ""
        return self.asset_stakers[asset_id].hex()

    @view
    def get_config(self) -> StakingConfig:
        return StakingConfig(
            owner_address=self.owner_address.hex(),
            white_listed_asset_source=self.white_listed_asset_source.hex(),
            rewards_token=self.rewards_token.hex(),
            cycle_length_in_seconds=self.cycle_length_in_seconds,
            period_length_in_cycles=self.period_length_in_cycles,
            freeze_cycles=self.freeze_cycles,
            max_compute_period=self.max_compute_period,
        )

    @view
    def front_end_api(self) -> StakingPoolInfo:
        return StakingPoolInfo(
            total_rewards_pool=self.total_rewards_pool,
            total_rewards_deposited=self.total_rewards_deposited,
            total_rewards_credited=self.total_rewards_credited,
            total_rewards_withdrawn=self.total_rewards_withdrawn,
            number_of_staked_nfts=self.number_of_staked_nfts,
            is_started=self.is_started,
            start_timestamp=self.start_timestamp,
            paused=self.paused,
        )
