from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message

from hesco.bot.ui import error_text, fmt_money
from hesco.core.time import fmt_dt
from hesco.db.models import User
from hesco.db.session import session_scope
from hesco.repo import ensure_user, get_mpesa_phone_number
from hesco.services.errors import LedgerError
from hesco.services.ledger.service import ledger_store
from hesco.services.plans.service import plan_service
from hesco.services.plans.tiers import PlanTier, TaskType, referral_reward, task_reward, withdrawal_base_cap
from hesco.services.referrals.service import referral_service
from hesco.services.tasks.service import task_service
from hesco.services.withdrawals.service import max_withdrawal, next_withdrawal_date, withdrawal_service

log = logging.getLogger(__name__)

router = Router()


@router.message(CommandStart())
async def cmd_start(message: Message, command: CommandObject) -> None:
    tg_id = message.from_user.id

    # /start ref_<CODE>
    payload = (command.args or "").strip()

    async with session_scope() as session:
        is_new = await session.get(User, tg_id) is None
        await ensure_user(session, tg_id)
        await session.commit()

        # only a first /start can attach an upline
        if is_new and payload.startswith("ref_"):
            code = payload.split("ref_", 1)[1].strip()
            if code:
                await referral_service.register_referral(session, referred_id=tg_id, ref_code=code)

        code = await referral_service.ensure_ref_code(session, tg_id)
        await session.commit()

    me = await message.bot.get_me()
    await message.answer(
        "👋 Welcome!\n\n"
        "Pick a plan with /plans, complete daily tasks and invite friends.\n\n"
        f"Your referral link: https://t.me/{me.username}?start=ref_{code}"
    )


@router.message(Command("plans"))
async def cmd_plans(message: Message) -> None:
    async with session_scope() as session:
        mpesa = await get_mpesa_phone_number(session)

    lines = ["📋 Plans\n"]
    for tier in PlanTier:
        lines.append(
            f"• {fmt_money(tier.price)}: video {fmt_money(task_reward(TaskType.VIDEO, tier))}, "
            f"survey {fmt_money(task_reward(TaskType.SURVEY, tier))}, "
            f"referral L1 {fmt_money(referral_reward(1, tier))}, "
            f"base withdrawal {fmt_money(withdrawal_base_cap(tier))}"
        )
    lines.append(f"\nPay via M-Pesa to {mpesa}, then send:\n/apply <plan> <your number> <M-Pesa message>")
    await message.answer("\n".join(lines))


@router.message(Command("apply"))
async def cmd_apply(message: Message, command: CommandObject) -> None:
    tg_id = message.from_user.id
    parts = (command.args or "").split(maxsplit=2)
    if len(parts) < 3 or not parts[0].isdigit():
        await message.answer("Usage: /apply <plan> <your M-Pesa number> <M-Pesa confirmation message>")
        return

    async with session_scope() as session:
        await ensure_user(session, tg_id, phone=parts[1])
        await session.commit()
        try:
            app = await plan_service.submit_application(
                session,
                user_id=tg_id,
                plan_amount=int(parts[0]),
                mpesa_number=parts[1],
                mpesa_message=parts[2],
            )
        except (LedgerError, ValueError) as e:
            await message.answer(error_text(e))
            return

    await message.answer(f"✅ Application #{app.id} submitted. We will verify your payment shortly.")


@router.message(Command("balance"))
async def cmd_balance(message: Message) -> None:
    tg_id = message.from_user.id
    async with session_scope() as session:
        snap = await ledger_store.snapshot(session, tg_id)
        tier = await plan_service.plan_tier_for_user(session, tg_id)
        requests = await withdrawal_service.list_requests(session, user_id=tg_id, limit=3)

    lines = [
        "💰 Balance\n",
        f"Plan balance: {fmt_money(snap.plan_balance)}",
        f"Available: {fmt_money(snap.available_balance)}",
        f"Total earned: {fmt_money(snap.total_earned)}",
    ]
    if tier is not None:
        lines.append(f"\nPlan: {fmt_money(tier.price)}")
        lines.append(f"Max withdrawal: {fmt_money(max_withdrawal(tier, snap.available_balance))}")
    lines.append(f"Next withdrawal day: {next_withdrawal_date().isoformat()}")
    if requests:
        lines.append("\nRecent withdrawals:")
        for w in requests:
            lines.append(f"#{w.id} {fmt_money(w.amount)} · {w.status}")
    await message.answer("\n".join(lines))


@router.message(Command("history"))
async def cmd_history(message: Message) -> None:
    tg_id = message.from_user.id
    async with session_scope() as session:
        items = await ledger_store.history(session, tg_id, limit=20)

    if not items:
        await message.answer("No transactions yet.")
        return
    lines = ["🧾 Last transactions\n"]
    for tx in items:
        lines.append(f"{fmt_dt(tx.created_at)}  {tx.type}  {fmt_money(tx.amount)}  → {fmt_money(tx.balance_after)}")
    await message.answer("\n".join(lines))


@router.message(Command("task"))
async def cmd_task(message: Message, command: CommandObject) -> None:
    tg_id = message.from_user.id
    arg = (command.args or "").strip().lower()
    if not arg:
        async with session_scope() as session:
            done = {c.task_type for c in await task_service.completions_for_day(session, tg_id)}
        lines = ["📅 Today's tasks\n"]
        for t in TaskType:
            mark = "✅" if t.value in done else "▫️"
            lines.append(f"{mark} {t.value}: /task {t.value}")
        await message.answer("\n".join(lines))
        return
    try:
        task_type = TaskType(arg)
    except ValueError:
        await message.answer("Usage: /task video | /task survey")
        return

    async with session_scope() as session:
        try:
            outcome = await task_service.complete_task(session, tg_id, task_type)
        except LedgerError as e:
            await message.answer(error_text(e))
            return

    reward = fmt_money(outcome.completion.reward_amount)
    if outcome.credited:
        await message.answer(f"✅ {task_type.value.title()} task completed: +{reward}")
    else:
        await message.answer(f"ℹ️ You already completed today's {task_type.value} task ({reward}).")


@router.message(Command("withdraw"))
async def cmd_withdraw(message: Message, command: CommandObject) -> None:
    tg_id = message.from_user.id
    parts = (command.args or "").split()
    if len(parts) != 2:
        await message.answer("Usage: /withdraw <amount> <M-Pesa number>")
        return
    try:
        amount = Decimal(parts[0])
    except InvalidOperation:
        amount = None
    if amount is None or not amount.is_finite():
        await message.answer("❌ Amount must be a number, e.g. 150")
        return

    async with session_scope() as session:
        try:
            req = await withdrawal_service.request_withdrawal(
                session,
                tg_id,
                amount,
                parts[1],
                request_key=f"tg-{tg_id}-{message.message_id}",
            )
        except (LedgerError, ValueError) as e:
            await message.answer(error_text(e))
            return

    await message.answer(
        "✅ Withdrawal request created\n\n"
        f"Request: #{req.id}\n"
        f"Amount: {fmt_money(req.amount)}\n"
        f"Tax: {fmt_money(req.tax_amount)}\n"
        f"You receive: {fmt_money(req.net_amount)}\n"
        f"Status: {req.status}"
    )


@router.message(Command("referrals"))
async def cmd_referrals(message: Message) -> None:
    tg_id = message.from_user.id
    async with session_scope() as session:
        rewards = await referral_service.list_rewards(session, referrer_id=tg_id)
        edges = await referral_service.list_referrals(session, referrer_id=tg_id)
        code = await referral_service.ensure_ref_code(session, tg_id)
        await session.commit()

    per_level = {lvl: sum(1 for e in edges if e.level == lvl) for lvl in (1, 2, 3)}
    total = sum((Decimal(r.reward_amount) for r in rewards), Decimal("0"))
    lines = [
        f"👥 Referral code: {code}",
        "Team: " + " · ".join(f"L{lvl} {n}" for lvl, n in per_level.items()),
        f"Earned from referrals: {fmt_money(total)}\n",
    ]
    for r in rewards[:10]:
        lines.append(f"L{r.level} · user {r.referred_id} · plan {fmt_money(r.referred_plan_amount)} · +{fmt_money(r.reward_amount)}")
    await message.answer("\n".join(lines))
