from __future__ import annotations

import logging

from aiogram import Router
from aiogram.filters import BaseFilter, Command, CommandObject
from aiogram.types import Message

from hesco.bot.auth import is_owner
from hesco.bot.ui import error_text, fmt_money
from hesco.db.session import session_scope
from hesco.repo import MPESA_PHONE_KEY, set_app_setting
from hesco.services.errors import LedgerError
from hesco.services.ledger.service import ledger_store
from hesco.services.plans.service import plan_service
from hesco.services.withdrawals.service import withdrawal_service

log = logging.getLogger(__name__)


class OwnerFilter(BaseFilter):
    async def __call__(self, message: Message) -> bool:
        return bool(message.from_user) and is_owner(message.from_user.id)


router = Router()
router.message.filter(OwnerFilter())


def _int_arg(command: CommandObject) -> int | None:
    raw = (command.args or "").split(maxsplit=1)
    if not raw or not raw[0].isdigit():
        return None
    return int(raw[0])


@router.message(Command("apps"))
async def cmd_apps(message: Message) -> None:
    async with session_scope() as session:
        apps = await plan_service.list_applications(session, status="pending", limit=20)

    if not apps:
        await message.answer("No pending applications ✅")
        return
    lines = ["📝 Pending applications\n"]
    for a in apps:
        lines.append(f"#{a.id} · user {a.user_id} · plan {fmt_money(a.plan_amount)} · {a.mpesa_number}\n{a.mpesa_message}\n")
    await message.answer("\n".join(lines))


@router.message(Command("approve"))
async def cmd_approve(message: Message, command: CommandObject) -> None:
    application_id = _int_arg(command)
    if application_id is None:
        await message.answer("Usage: /approve <application_id>")
        return

    async with session_scope() as session:
        try:
            outcome = await plan_service.approve_application(session, application_id, actor=message.from_user.id)
        except LedgerError as e:
            await message.answer(error_text(e))
            return

    credited = "credited" if outcome.transaction is not None else "already credited"
    paid = ", ".join(f"L{r.level} {r.referrer_id} +{fmt_money(r.reward_amount)}" for r in outcome.rewards) or "none"
    tail = "" if outcome.referrals_settled else "\n⚠️ Referral distribution failed; it will be retried."
    await message.answer(f"✅ Application #{application_id} approved ({credited}).\nReferral rewards: {paid}{tail}")


@router.message(Command("reject_app"))
async def cmd_reject_app(message: Message, command: CommandObject) -> None:
    application_id = _int_arg(command)
    if application_id is None:
        await message.answer("Usage: /reject_app <application_id>")
        return

    async with session_scope() as session:
        try:
            await plan_service.reject_application(session, application_id, actor=message.from_user.id)
        except LedgerError as e:
            await message.answer(error_text(e))
            return
    await message.answer(f"Application #{application_id} rejected.")


@router.message(Command("withdrawals"))
async def cmd_withdrawals(message: Message, command: CommandObject) -> None:
    status = (command.args or "pending").strip().lower()
    async with session_scope() as session:
        items = await withdrawal_service.list_requests(session, status=status, limit=20)

    if not items:
        await message.answer(f"No {status} withdrawals.")
        return
    lines = [f"💸 Withdrawals ({status})\n"]
    for w in items:
        lines.append(
            f"#{w.id} · user {w.user_id} · {fmt_money(w.amount)} (net {fmt_money(w.net_amount)}) → {w.destination}"
        )
    await message.answer("\n".join(lines))


@router.message(Command("wd"))
async def cmd_withdrawal_status(message: Message, command: CommandObject) -> None:
    parts = (command.args or "").split(maxsplit=2)
    if len(parts) == 1 and parts[0].isdigit():
        async with session_scope() as session:
            try:
                req = await withdrawal_service.get_request(session, int(parts[0]))
            except LedgerError as e:
                await message.answer(error_text(e))
                return
        await message.answer(
            f"Withdrawal #{req.id} · user {req.user_id}\n"
            f"{fmt_money(req.amount)} (tax {fmt_money(req.tax_amount)}, net {fmt_money(req.net_amount)})"
            f" → {req.destination}\nStatus: {req.status}"
        )
        return
    if len(parts) < 2 or not parts[0].isdigit():
        await message.answer("Usage: /wd <request_id> processing|completed|rejected [notes]")
        return

    async with session_scope() as session:
        try:
            req = await withdrawal_service.update_status(
                session,
                int(parts[0]),
                parts[1],
                actor=message.from_user.id,
                notes=parts[2] if len(parts) == 3 else None,
            )
        except LedgerError as e:
            await message.answer(error_text(e))
            return

    await message.answer(f"Withdrawal #{req.id}: {req.status}")

    # Notify the user (best-effort).
    try:
        await message.bot.send_message(
            chat_id=req.user_id,
            text=f"💸 Your withdrawal #{req.id} of {fmt_money(req.amount)} is now {req.status}.",
        )
    except Exception:
        log.warning("withdrawal_notify_failed", extra={"request_id": req.id, "user_id": req.user_id})


@router.message(Command("verify"))
async def cmd_verify(message: Message, command: CommandObject) -> None:
    user_id = _int_arg(command)
    if user_id is None:
        await message.answer("Usage: /verify <tg_id>")
        return

    async with session_scope() as session:
        report = await ledger_store.replay(session, user_id)

    state = "✅ consistent" if report.consistent else f"❌ mismatch at lines {report.broken_links}"
    await message.answer(
        f"Ledger for {user_id}: {report.entries} lines, {state}\n"
        f"stored   plan {fmt_money(report.stored.plan_balance)} / available {fmt_money(report.stored.available_balance)}"
        f" / earned {fmt_money(report.stored.total_earned)}\n"
        f"replayed plan {fmt_money(report.replayed.plan_balance)} / available {fmt_money(report.replayed.available_balance)}"
        f" / earned {fmt_money(report.replayed.total_earned)}"
    )


@router.message(Command("set_mpesa"))
async def cmd_set_mpesa(message: Message, command: CommandObject) -> None:
    phone = (command.args or "").strip()
    if not phone:
        await message.answer("Usage: /set_mpesa <phone>")
        return

    async with session_scope() as session:
        await set_app_setting(session, MPESA_PHONE_KEY, phone)
        await session.commit()
    log.info("mpesa_number_updated", extra={"tg_id": message.from_user.id})
    await message.answer(f"M-Pesa number set to {phone}")
