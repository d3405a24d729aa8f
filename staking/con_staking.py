# Multi-Pool Staking Ledger
# Rewards accrue per block to every pool's stakers in proportion to stake,
# tracked as a cumulative reward-per-share value scaled by SCALE.
SCALE = 1_000_000_000_000

# State Variables
pools = Hash()
users = Hash()
pool_counter = Variable()
total_alloc_point = Variable()
paused = Variable()
locked = Variable()
contract_owner = Variable()

# Staker registry
stakers = Hash(default_value=None)
user_count = Hash(default_value=0)
registered = Hash(default_value=False)

# Events
PoolAddedEvent = LogEvent(
    event="PoolAdded",
    params={
        "pool_id": {"type": int},
        "stake_token": {"type": str, "idx": True},
        "reward_token": {"type": str, "idx": True},
        "alloc_point": {"type": int},
        "reward_rate": {"type": int}
    }
)

PoolUpdatedEvent = LogEvent(
    event="PoolUpdated",
    params={
        "pool_id": {"type": int},
        "stake_token": {"type": str, "idx": True},
        "reward_token": {"type": str, "idx": True},
        "alloc_point": {"type": int},
        "reward_rate": {"type": int},
        "acc_reward_per_share": {"type": int}
    }
)

StakeEvent = LogEvent(
    event="Stake",
    params={
        "pool_id": {"type": int},
        "staker": {"type": str, "idx": True},
        "amount": {"type": int},
        "reward": {"type": int}
    }
)

UnstakeEvent = LogEvent(
    event="Unstake",
    params={
        "pool_id": {"type": int},
        "staker": {"type": str, "idx": True},
        "amount": {"type": int},
        "reward": {"type": int}
    }
)

ClaimEvent = LogEvent(
    event="Claim",
    params={
        "pool_id": {"type": int},
        "staker": {"type": str, "idx": True},
        "reward": {"type": int}
    }
)

RestakeEvent = LogEvent(
    event="Restake",
    params={
        "pool_id": {"type": int},
        "staker": {"type": str, "idx": True},
        "reward": {"type": int}
    }
)

RewardsDepositedEvent = LogEvent(
    event="RewardsDeposited",
    params={
        "pool_id": {"type": int},
        "depositor": {"type": str, "idx": True},
        "amount": {"type": int}
    }
)

EmergencyWithdrawEvent = LogEvent(
    event="EmergencyWithdraw",
    params={
        "pool_id": {"type": int},
        "staker": {"type": str, "idx": True},
        "amount": {"type": int}
    }
)

@construct
def init():
    pool_counter.set(0)
    total_alloc_point.set(0)
    paused.set(False)
    locked.set(False)
    contract_owner.set(ctx.caller)


# Helper functions

def assert_is_owner():
    assert ctx.caller == contract_owner.get(), "Unauthorized: Only contract owner allowed"


def assert_not_paused():
    assert not paused.get(), "Paused: Contract is paused"


def enter():
    assert not locked.get(), "ReentrantCall: Ledger is busy"
    locked.set(True)


def leave():
    locked.set(False)


def get_pool_record(pool_id: int):
    pool = pools[pool_id]
    assert pool is not None, "PoolNotFound: Pool does not exist"
    return pool


def get_user_record(pool_id: int, address: str):
    user = users[pool_id, address]
    if user is None:
        return {"amount": 0, "reward_debt": 0}
    return user


def projected_acc(pool, current: int):
    if current <= pool["last_accrual_point"] or pool["total_staked"] == 0:
        return pool["acc_reward_per_share"]

    elapsed = current - pool["last_accrual_point"]
    reward = elapsed * pool["reward_rate"]
    return pool["acc_reward_per_share"] + reward * SCALE // pool["total_staked"]


def settle(pool_id: int, current: int):
    pool = get_pool_record(pool_id)
    if current <= pool["last_accrual_point"]:
        return pool

    # Nothing staked: the interval's rewards are not distributed
    pool["acc_reward_per_share"] = projected_acc(pool, current)
    pool["last_accrual_point"] = current
    pools[pool_id] = pool
    return pool


def reward_debt(amount: int, pool):
    return amount * pool["acc_reward_per_share"] // SCALE


def pending_of(user, pool):
    return user["amount"] * pool["acc_reward_per_share"] // SCALE - user["reward_debt"]


def register(pool_id: int, address: str):
    if registered[pool_id, address]:
        return

    index = user_count[pool_id]
    stakers[pool_id, index] = address
    user_count[pool_id] = index + 1
    registered[pool_id, address] = True


def pay(token: str, to: str, amount: int):
    if amount > 0:
        importlib.import_module(token).transfer(amount=amount, to=to)


def pull(token: str, amount: int):
    token_contract = importlib.import_module(token)
    balance_before = token_contract.balance_of(ctx.this)

    token_contract.transfer_from(
        amount=amount,
        to=ctx.this,
        main_account=ctx.caller
    )

    received = token_contract.balance_of(ctx.this) - balance_before
    assert received == amount, f"TokenTransferFailed: Expected {amount}, received {received}"


def claim_pool(pool_id: int, current: int):
    # Settles the caller's reward in the books; the caller pays it out
    pool = settle(pool_id, current)
    user = get_user_record(pool_id, ctx.caller)

    reward = pending_of(user, pool)
    if reward > 0:
        user["reward_debt"] = reward_debt(user["amount"], pool)
        users[pool_id, ctx.caller] = user

        pool["rewards_paid"] = pool["rewards_paid"] + reward
        pools[pool_id] = pool

    return reward


def restake_pool(pool_id: int, current: int):
    pool = settle(pool_id, current)
    assert pool["stake_token"] == pool["reward_token"], \
        "IncompatibleTokens: Reward token differs from stake token"

    user = get_user_record(pool_id, ctx.caller)
    reward = pending_of(user, pool)
    if reward == 0:
        return 0

    # Restaked reward must be backed by deposited funding
    assert pool["rewards_paid"] + reward <= pool["rewards_deposited"], \
        f"InsufficientRewards: Pool funding cannot cover {reward}"

    user["amount"] = user["amount"] + reward
    user["reward_debt"] = reward_debt(user["amount"], pool)
    users[pool_id, ctx.caller] = user

    pool["total_staked"] = pool["total_staked"] + reward
    pool["rewards_paid"] = pool["rewards_paid"] + reward
    pools[pool_id] = pool

    RestakeEvent({
        "pool_id": pool_id,
        "staker": ctx.caller,
        "reward": reward
    })

    return reward


def unstake_pool(pool_id: int, amount: int, current: int):
    pool = settle(pool_id, current)
    user = get_user_record(pool_id, ctx.caller)

    assert amount > 0 and amount <= user["amount"], \
        f"InsufficientStake: Cannot unstake {amount}, staked {user['amount']}"

    reward = pending_of(user, pool)

    user["amount"] = user["amount"] - amount
    user["reward_debt"] = reward_debt(user["amount"], pool)
    users[pool_id, ctx.caller] = user

    pool["total_staked"] = pool["total_staked"] - amount
    pool["rewards_paid"] = pool["rewards_paid"] + reward
    pools[pool_id] = pool

    pay(pool["reward_token"], ctx.caller, reward)
    pay(pool["stake_token"], ctx.caller, amount)

    UnstakeEvent({
        "pool_id": pool_id,
        "staker": ctx.caller,
        "amount": amount,
        "reward": reward
    })

    return reward


def registered_pools(address: str):
    return [pool_id for pool_id in range(pool_counter.get()) if registered[pool_id, address]]


# Pool registry

@export
def add_pool(
    stake_token: str,
    reward_token: str,
    alloc_point: int,
    accrual_point_hint: int,
    reward_rate: int
):
    assert_is_owner()
    assert_not_paused()
    assert alloc_point >= 0, "InvalidAmount: Allocation point must be non-negative"
    assert accrual_point_hint >= 0, "InvalidAmount: Accrual point must be non-negative"
    assert reward_rate >= 0, "InvalidAmount: Reward rate must be non-negative"

    pool_id = pool_counter.get()
    pool_counter.set(pool_id + 1)
    total_alloc_point.set(total_alloc_point.get() + alloc_point)

    pools[pool_id] = {
        "stake_token": stake_token,
        "reward_token": reward_token,
        "alloc_point": alloc_point,
        "last_accrual_point": accrual_point_hint,
        "reward_rate": reward_rate,
        "acc_reward_per_share": 0,
        "total_staked": 0,
        "rewards_deposited": 0,
        "rewards_paid": 0
    }

    PoolAddedEvent({
        "pool_id": pool_id,
        "stake_token": stake_token,
        "reward_token": reward_token,
        "alloc_point": alloc_point,
        "reward_rate": reward_rate
    })

    return pool_id

@export
def update_pool(
    pool_id: int,
    stake_token: str,
    reward_token: str,
    alloc_point: int,
    accrual_point_hint: int,
    reward_rate: int
):
    assert_is_owner()
    enter()
    assert alloc_point >= 0, "InvalidAmount: Allocation point must be non-negative"
    assert reward_rate >= 0, "InvalidAmount: Reward rate must be non-negative"

    # Accrue everything up to now under the old rate
    pool = settle(pool_id, block_num)

    if stake_token != pool["stake_token"] or reward_token != pool["reward_token"]:
        assert pool["total_staked"] == 0, \
            "IncompatibleTokens: Cannot change pool tokens while stake is held"

    total_alloc_point.set(total_alloc_point.get() - pool["alloc_point"] + alloc_point)

    pool["stake_token"] = stake_token
    pool["reward_token"] = reward_token
    pool["alloc_point"] = alloc_point
    pool["reward_rate"] = reward_rate
    if accrual_point_hint > pool["last_accrual_point"]:
        pool["last_accrual_point"] = accrual_point_hint
    pools[pool_id] = pool

    PoolUpdatedEvent({
        "pool_id": pool_id,
        "stake_token": stake_token,
        "reward_token": reward_token,
        "alloc_point": alloc_point,
        "reward_rate": reward_rate,
        "acc_reward_per_share": pool["acc_reward_per_share"]
    })

    leave()

@export
def get_pool_count():
    return pool_counter.get()

@export
def get_pool(pool_id: int):
    return get_pool_record(pool_id)


# Stake ledger

@export
def stake(pool_id: int, amount: int):
    assert_not_paused()
    enter()
    assert amount > 0, "InvalidAmount: Stake amount must be positive"

    pool = settle(pool_id, block_num)
    user = get_user_record(pool_id, ctx.caller)

    reward = pending_of(user, pool)

    user["amount"] = user["amount"] + amount
    user["reward_debt"] = reward_debt(user["amount"], pool)
    users[pool_id, ctx.caller] = user

    pool["total_staked"] = pool["total_staked"] + amount
    pool["rewards_paid"] = pool["rewards_paid"] + reward
    pools[pool_id] = pool

    register(pool_id, ctx.caller)

    pay(pool["reward_token"], ctx.caller, reward)
    pull(pool["stake_token"], amount)

    StakeEvent({
        "pool_id": pool_id,
        "staker": ctx.caller,
        "amount": amount,
        "reward": reward
    })

    leave()
    return reward

@export
def unstake(pool_id: int, amount: int):
    enter()
    reward = unstake_pool(pool_id, amount, block_num)
    leave()
    return reward

@export
def claim(pool_id: int):
    assert_not_paused()
    enter()

    reward = claim_pool(pool_id, block_num)
    if reward > 0:
        pay(get_pool_record(pool_id)["reward_token"], ctx.caller, reward)

        ClaimEvent({
            "pool_id": pool_id,
            "staker": ctx.caller,
            "reward": reward
        })

    leave()
    return reward

@export
def claim_and_restake(pool_id: int):
    assert_not_paused()
    enter()
    reward = restake_pool(pool_id, block_num)
    leave()
    return reward

@export
def pending_rewards(pool_id: int, user: str):
    pool = get_pool_record(pool_id)
    info = get_user_record(pool_id, user)
    acc = projected_acc(pool, block_num)
    return info["amount"] * acc // SCALE - info["reward_debt"]

@export
def user_info(user: str, pool_id: int):
    get_pool_record(pool_id)
    return get_user_record(pool_id, user)


# Staker registry

@export
def user_list(pool_id: int, index: int):
    get_pool_record(pool_id)
    assert index >= 0 and index < user_count[pool_id], \
        f"IndexOutOfRange: No staker at index {index}"
    return stakers[pool_id, index]

@export
def list_users(pool_id: int):
    get_pool_record(pool_id)
    return [stakers[pool_id, index] for index in range(user_count[pool_id])]

@export
def get_user_count(pool_id: int):
    get_pool_record(pool_id)
    return user_count[pool_id]

@export
def get_user_pools(user: str):
    return registered_pools(user)


# Batch operations

@export
def claim_all():
    assert_not_paused()
    enter()

    # Books for every pool are settled before any token leaves the contract
    payouts = {}
    tokens = []
    total = 0
    for pool_id in registered_pools(ctx.caller):
        reward = claim_pool(pool_id, block_num)
        if reward == 0:
            continue

        token = pools[pool_id]["reward_token"]
        if token not in payouts:
            payouts[token] = 0
            tokens.append(token)
        payouts[token] = payouts[token] + reward
        total = total + reward

        ClaimEvent({
            "pool_id": pool_id,
            "staker": ctx.caller,
            "reward": reward
        })

    for token in tokens:
        pay(token, ctx.caller, payouts[token])

    leave()
    return total

@export
def unstake_all(pool_id: int):
    enter()
    get_pool_record(pool_id)
    amount = get_user_record(pool_id, ctx.caller)["amount"]
    assert amount > 0, "InsufficientStake: Nothing staked in this pool"
    reward = unstake_pool(pool_id, amount, block_num)
    leave()
    return reward

@export
def claim_and_restake_all():
    assert_not_paused()
    enter()

    total = 0
    for pool_id in registered_pools(ctx.caller):
        pool = pools[pool_id]
        if pool["stake_token"] != pool["reward_token"]:
            continue
        total = total + restake_pool(pool_id, block_num)

    leave()
    return total


# Administration

@export
def deposit_rewards(pool_id: int, amount: int):
    enter()
    assert amount > 0, "InvalidAmount: Amount must be positive"

    pool = get_pool_record(pool_id)
    pool["rewards_deposited"] = pool["rewards_deposited"] + amount
    pools[pool_id] = pool

    pull(pool["reward_token"], amount)

    RewardsDepositedEvent({
        "pool_id": pool_id,
        "depositor": ctx.caller,
        "amount": amount
    })

    leave()

@export
def emergency_withdraw(pool_id: int):
    enter()

    pool = settle(pool_id, block_num)
    user = get_user_record(pool_id, ctx.caller)
    amount = user["amount"]
    assert amount > 0, "InsufficientStake: Nothing staked in this pool"

    # Pending reward is forfeited
    user["amount"] = 0
    user["reward_debt"] = 0
    users[pool_id, ctx.caller] = user

    pool["total_staked"] = pool["total_staked"] - amount
    pools[pool_id] = pool

    pay(pool["stake_token"], ctx.caller, amount)

    EmergencyWithdrawEvent({
        "pool_id": pool_id,
        "staker": ctx.caller,
        "amount": amount
    })

    leave()

@export
def emergency_pause():
    assert_is_owner()
    paused.set(True)

@export
def emergency_unpause():
    assert_is_owner()
    paused.set(False)

@export
def transfer_ownership(new_owner: str):
    assert_is_owner()
    assert new_owner != "", "InvalidAmount: Owner cannot be empty"
    contract_owner.set(new_owner)

@export
def get_contract_status():
    return {
        "paused": paused.get(),
        "owner": contract_owner.get(),
        "total_pools": pool_counter.get(),
        "total_alloc_point": total_alloc_point.get()
    }
