import os
from hathor.crypto.util import decode_address
from hathor.nanocontracts.context import Context
from hathor.nanocontracts.types import (
    NCDepositAction,
    NCWithdrawalAction,
    Address,
    Amount,
    TokenUid,
)
from hathor.wallet.keypair import KeyPair
from hathor.util import not_none
from hathor_tests.nanocontracts.blueprints.unittest import BlueprintTestCase

from nft_staking.blueprints.nft_staking import (
    NFTStaking,
    AlreadyStaked,
    InvalidActions,
    InvalidInput,
    InvalidState,
    NotStaked,
    SameCycleRestake,
    StillFrozen,
)

CYCLE_LENGTH = 60
PERIOD_LENGTH = 3


class NFTStakingAbuseTestCase(BlueprintTestCase):
    freeze_cycles = 2

    def setUp(self):
        super().setUp()

        self.contract_id = self.gen_random_contract_id()
        self.blueprint_id = self._register_blueprint_class(NFTStaking)

        self.rewards_token = self.gen_random_token_uid()
        self.owner_address, _ = self._get_any_address()
        self.source_address, _ = self._get_any_address()
        self.staker, _ = self._get_any_address()
        self.asset_id = self.gen_random_token_uid()

        self.tx = self.get_genesis_tx()
        self.start_time = int(self.clock.seconds())

        self._initialize_contract()

    def _get_any_address(self) -> tuple[bytes, KeyPair]:
        """Generate a random address and keypair."""
        password = os.urandom(12)
        key = KeyPair.create(password)
        address_b58 = key.address
        address_bytes = decode_address(not_none(address_b58))
        return address_bytes, key

    def _context(self, caller: bytes, cycle: int, actions=None) -> Context:
        return self.create_context(
            actions=actions or [],
            vertex=self.tx,
            caller_id=Address(caller),
            timestamp=self.start_time + (cycle - 1) * CYCLE_LENGTH,
        )

    def _initialize_contract(self) -> None:
        ctx = self._context(self.owner_address, 1)
        self.runner.create_contract(
            self.contract_id,
            self.blueprint_id,
            ctx,
            CYCLE_LENGTH,
            PERIOD_LENGTH,
            self.source_address,
            self.rewards_token,
            self.freeze_cycles,
        )
        self.runner.call_public_method(
            self.contract_id,
            "set_reward_for_period",
            self._context(self.owner_address, 1),
            1,
            10,
        )
        ctx = self._context(
            self.owner_address,
            1,
            [NCDepositAction(token_uid=self.rewards_token, amount=Amount(1_000))],
        )
        self.runner.call_public_method(self.contract_id, "deposit_rewards", ctx)
        self.runner.call_public_method(
            self.contract_id, "start", self._context(self.owner_address, 1)
        )

    def _stake(
        self,
        cycle: int,
        staker: bytes | None = None,
        asset_id: TokenUid | None = None,
        caller: bytes | None = None,
        amount: int = 1,
    ) -> None:
        asset_id = asset_id or self.asset_id
        ctx = self._context(
            caller or self.source_address,
            cycle,
            [NCDepositAction(token_uid=asset_id, amount=Amount(amount))],
        )
        self.runner.call_public_method(
            self.contract_id, "stake_nft", ctx, Address(staker or self.staker), asset_id
        )

    def _unstake(self, cycle: int, caller: bytes | None = None) -> None:
        ctx = self._context(
            caller or self.staker,
            cycle,
            [NCWithdrawalAction(token_uid=self.asset_id, amount=Amount(1))],
        )
        self.runner.call_public_method(
            self.contract_id, "unstake_nft", ctx, self.asset_id, None
        )

    def _history(self) -> list[tuple[int, int, bool]]:
        history = self.runner.call_view_method(
            self.contract_id, "get_staker_history", Address(self.staker), self.asset_id
        )
        return [tuple(snapshot) for snapshot in history]

    def test_freeze_window(self):
        """Test an NFT cannot leave before the freeze window ends."""
        self._stake(1)
        with self.assertRaises(StillFrozen):
            self._unstake(1)
        with self.assertRaises(StillFrozen):
            self._unstake(2)

        self._unstake(3)
        self.assertEqual(self._history(), [(1, 2, False)])

    def test_same_cycle_restake(self):
        """Test an NFT cannot come back in the cycle it left."""
        self._stake(1)
        self._unstake(3)
        with self.assertRaises(SameCycleRestake):
            self._stake(3)

        self._stake(4)
        self.assertEqual(self._history(), [(1, 2, False), (4, 4, True)])

    def test_already_staked(self):
        """Test an asset can only be staked once at a time."""
        self._stake(1)
        with self.assertRaises(AlreadyStaked):
            self._stake(2)

        other_staker, _ = self._get_any_address()
        with self.assertRaises(AlreadyStaked):
            self._stake(2, staker=other_staker)

        info = self.runner.call_view_method(self.contract_id, "front_end_api")
        self.assertEqual(info.number_of_staked_nfts, 1)

    def test_deposit_validation(self):
        """Test deposit notifications must come from the custody source."""
        stranger, _ = self._get_any_address()
        with self.assertRaises(InvalidInput):
            self._stake(1, caller=stranger)
        with self.assertRaises(InvalidInput):
            self._stake(1, asset_id=self.rewards_token)
        with self.assertRaises(InvalidActions):
            self._stake(1, amount=2)

        ctx = self._context(
            self.source_address,
            1,
            [NCDepositAction(token_uid=self.gen_random_token_uid(), amount=Amount(1))],
        )
        with self.assertRaises(InvalidActions):
            self.runner.call_public_method(
                self.contract_id, "stake_nft", ctx, Address(self.staker), self.asset_id
            )

    def test_unstake_by_other_address(self):
        """Test only the staker can withdraw the NFT."""
        self._stake(1)
        stranger, _ = self._get_any_address()
        with self.assertRaises(NotStaked):
            self._unstake(5, caller=stranger)

        self._unstake(5)
        with self.assertRaises(NotStaked):
            self._unstake(6)

    def test_emergency_unstake_while_paused(self):
        """Test a paused contract still lets stakers leave, without payout."""
        self._stake(1)
        self.runner.call_public_method(
            self.contract_id, "pause", self._context(self.owner_address, 1)
        )

        with self.assertRaises(InvalidState):
            self.runner.call_public_method(
                self.contract_id,
                "claim_rewards",
                self._context(self.staker, 7),
                self.asset_id,
                1,
                None,
            )

        # Still inside the freeze window
        self._unstake(2)
        self.assertEqual(
            self.runner.call_view_method(
                self.contract_id, "get_reward_balance", Address(self.staker)
            ),
            0,
        )
        self.assertEqual(self._history(), [(1, 1, False)])
        self.assertEqual(
            self.runner.call_view_method(self.contract_id, "get_asset_staker", self.asset_id),
            "",
        )

        contract = self.get_readonly_contract(self.contract_id)
        assert isinstance(contract, NFTStaking)
        self.assertEqual(contract.number_of_staked_nfts, 0)
        self.assertEqual(contract.total_rewards_pool, 1_000)


class NFTStakingNoFreezeTestCase(NFTStakingAbuseTestCase):
    freeze_cycles = 0

    def test_freeze_window(self):
        """Test withdrawals are allowed right away without a freeze window."""
        self._stake(1)
        self._unstake(2)
        self.assertEqual(self._history(), [(1, 1, False)])

    def test_unstake_in_deposit_cycle(self):
        """Test a stake that never covered a full cycle leaves no snapshot."""
        self._stake(2)
        self._unstake(2)
        self.assertEqual(self._history(), [])

        with self.assertRaises(SameCycleRestake):
            self._stake(2)
