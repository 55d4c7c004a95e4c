import difflib
import math
from functools import wraps

from loguru import logger
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.helpers import escape_markdown
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from splitbill.config import get_settings
from splitbill.deps import controller, oracle, repo, resolver
from splitbill.errors import InvalidInputError, NotFoundError, StoreFailureError
from splitbill.ledger.settlement import round_half_up
from splitbill.llm.identity import sender_display_name, to_participant
from splitbill.models.schemas import (
    OcrAllocation,
    OcrConfirmation,
    PlatformParticipant,
    Session,
    SettlementResult,
)
from splitbill.report.export import build_report, report_filename

settings = get_settings()

VALID_COMMANDS = ["start", "help", "sessions", "list", "split", "settlement", "end", "export"]

HELP_TEXT = (
    "Commands:\n"
    "`[Session name]` — Create a new session (e.g. `Dinner Tonight`)\n"
    "/sessions — View & pick a session\n"
    "/list — View & delete transactions\n"
    "/split — Who paid what\n"
    "/settlement — Who pays whom\n"
    "/end — End the session\n"
    "/export — Excel report\n\n"
    "To log a transaction just type it (e.g. `I paid parking 5k`) or send a receipt photo."
)

SUMMARY_BUTTON = InlineKeyboardMarkup(
    [[InlineKeyboardButton("📊 View summary", callback_data="show_split")]]
)


def _format_money(amount: float) -> str:
    """Format amount Rupiah-style: Rp20.000."""
    return f"{settings.currency_symbol}{round_half_up(amount):,}".replace(",", ".")


def _md(text: str) -> str:
    return escape_markdown(text, version=1)


def _sender(update: Update) -> tuple[int, str]:
    user = update.effective_user
    return user.id, sender_display_name(user.username, user.first_name, user.last_name)


def paginate(items: list, page: int, page_size: int) -> tuple[list, int, int, int]:
    """Return (page items, clamped page, total pages, index of first item)."""
    total_pages = max(math.ceil(len(items) / page_size), 1)
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size
    return items[start:start + page_size], page, total_pages, start


def suggest_command(command: str) -> str | None:
    matches = difflib.get_close_matches(command, VALID_COMMANDS, n=1, cutoff=0.6)
    return matches[0] if matches else None


def session_button_label(session: Session, focused: bool) -> str:
    status_icon = "🟢" if session.status == "active" else "🔴"
    focus_icon = "⭐️ " if focused else ""
    return f"{focus_icon}{status_icon} {session.name}"


def split_summary_text(session: Session, result: SettlementResult) -> str:
    summary = result.summary
    lines = [
        f"📊 *Session summary: {_md(session.name)}*\n",
        f"Total expenses: *{_format_money(summary.total_expenses)}*\n",
        "*Who paid what:*",
    ]
    for payment in sorted(summary.payments, key=lambda p: p.total_paid, reverse=True):
        if payment.total_paid > 0:
            lines.append(f"- *{_md(payment.username)}*: paid {_format_money(payment.total_paid)}")
    return "\n".join(lines)


def settlement_plan_text(result: SettlementResult) -> str:
    lines = ["💸 *Settlement plan*\n"]
    for payment in result.plan:
        lines.append(
            f"*{_md(payment.debtor)}* pays *{_md(payment.creditor)}* "
            f"*{_format_money(payment.amount)}*"
        )
    return "\n".join(lines)


async def _respond(update: Update, text: str, reply_markup=None, parse_mode=None) -> None:
    """Edit the message behind a button press, or reply to a plain message."""
    if update.callback_query:
        await update.callback_query.edit_message_text(
            text, reply_markup=reply_markup, parse_mode=parse_mode
        )
    else:
        await update.effective_message.reply_text(
            text, reply_markup=reply_markup, parse_mode=parse_mode
        )


def with_focused_session(handler):
    """Run the handler against the chat's focused session, or tell the chat to pick one."""

    @wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        session = controller.get_focus(update.effective_chat.id)
        if session is None:
            if update.callback_query:
                await update.callback_query.answer()
            await update.effective_message.reply_text(
                oracle.rephrase("No session is selected. Use /sessions to pick one.")
            )
            return
        await handler(update, context, session)

    return wrapper


# ── Commands ────────────────────────────────────────────────────


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /start command."""
    await update.message.reply_text(
        oracle.rephrase(
            "Welcome! Type a session name to get started, or use /sessions to see existing sessions."
        )
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /help command."""
    await update.message.reply_text(HELP_TEXT, parse_mode="Markdown")


async def new_members(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Greet the group when the bot itself is added."""
    if any(member.id == context.bot.id for member in update.message.new_chat_members):
        await update.message.reply_text(
            "Hi everyone! 👋 I'm Split Bill Bot, here to help you split the bill without headaches.\n\n"
            "Just type a session name to start, e.g. `Dinner Together`",
            parse_mode="Markdown",
        )


async def _start_session(update: Update, name: str) -> None:
    chat_id = update.effective_chat.id
    user_id, sender = _sender(update)
    creator = PlatformParticipant(external_id=user_id, display_name=sender)
    try:
        session = controller.create_session(chat_id, creator, name)
    except InvalidInputError:
        await update.message.reply_text("Please give the session a name. Example: `Cafe Hangout`")
        return
    await update.message.reply_text(
        oracle.rephrase(f'Session "{session.name}" created and is now the active session.')
    )


async def sessions_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle /sessions command."""
    chat_id = update.effective_chat.id
    sessions = controller.list_sessions(chat_id)
    if not sessions:
        await update.message.reply_text(oracle.rephrase("No sessions have been created in this chat yet."))
        return

    focused = controller.get_focus(chat_id)
    buttons = [
        [InlineKeyboardButton(
            session_button_label(s, focused is not None and focused.id == s.id),
            callback_data=f"select_session:{s.id}",
        )]
        for s in sessions
    ]
    await update.message.reply_text(
        "Pick a session to manage:", reply_markup=InlineKeyboardMarkup(buttons)
    )


async def _show_transactions(update: Update, session: Session, page: int) -> None:
    transactions = repo.list_transactions(session.id)
    if not transactions:
        await _respond(update, oracle.rephrase("No transactions in this session yet."))
        return

    names = {m.id: m.username for m in repo.list_members(session.id)}
    shown, page, total_pages, start = paginate(transactions, page, settings.list_page_size)

    lines = [f"📜 *Transactions in: {_md(session.name)}* (Page {page}/{total_pages})\n"]
    buttons = []
    for number, tx in enumerate(shown, start + 1):
        payer = _md(names.get(tx.payer_id, "Unknown"))
        consumer = _md(names.get(tx.consumer_id, "Unknown"))
        lines.append(
            f"{number}. *{payer}* paid *{_format_money(tx.amount)}* for *{consumer}* ({_md(tx.description)})"
        )
        buttons.append(
            [InlineKeyboardButton(f"Delete No. {number}", callback_data=f"delete_tx:{tx.id}:{page}")]
        )

    pagination = []
    if page > 1:
        pagination.append(InlineKeyboardButton("⬅️ Previous", callback_data=f"list_page:{page - 1}"))
    if page < total_pages:
        pagination.append(InlineKeyboardButton("Next ➡️", callback_data=f"list_page:{page + 1}"))
    if pagination:
        buttons.append(pagination)

    await _respond(
        update, "\n".join(lines), reply_markup=InlineKeyboardMarkup(buttons), parse_mode="Markdown"
    )


@with_focused_session
async def list_command(update: Update, context: ContextTypes.DEFAULT_TYPE, session: Session):
    """Handle /list command and page buttons."""
    page = 1
    if update.callback_query:
        await update.callback_query.answer()
        page = int(update.callback_query.data.split(":")[1])
    await _show_transactions(update, session, page)


@with_focused_session
async def split_command(update: Update, context: ContextTypes.DEFAULT_TYPE, session: Session):
    """Handle /split command — who paid what."""
    if update.callback_query:
        await update.callback_query.answer()
    result = controller.settlement(session.id)
    if result.summary is None or result.summary.total_expenses == 0:
        await update.effective_message.reply_text(oracle.rephrase("No transactions to calculate yet."))
        return
    keyboard = InlineKeyboardMarkup(
        [[InlineKeyboardButton("💸 Calculate debts", callback_data="show_settlement")]]
    )
    await _respond(update, split_summary_text(session, result), reply_markup=keyboard, parse_mode="Markdown")


@with_focused_session
async def settlement_command(update: Update, context: ContextTypes.DEFAULT_TYPE, session: Session):
    """Handle /settlement command — who pays whom."""
    if update.callback_query:
        await update.callback_query.answer()
    result = controller.settlement(session.id)
    summary = result.summary
    if summary is None:
        await update.effective_message.reply_text("Nothing to calculate.")
        return
    if summary.member_count <= 1 and summary.total_expenses > 0:
        await update.effective_message.reply_text("There is only one member, nothing to settle.")
        return
    if not result.plan:
        await update.effective_message.reply_text(
            oracle.rephrase("Everything is settled or there are no transactions yet!")
        )
        return
    keyboard = InlineKeyboardMarkup(
        [[InlineKeyboardButton("🧾 Export report", callback_data="show_export")]]
    )
    await _respond(update, settlement_plan_text(result), reply_markup=keyboard, parse_mode="Markdown")


@with_focused_session
async def end_command(update: Update, context: ContextTypes.DEFAULT_TYPE, session: Session):
    """Handle /end command."""
    if session.status != "active":
        await update.message.reply_text(f'Session "{session.name}" has already ended.')
        return
    controller.end_session(session.id)
    controller.clear_focus(update.effective_chat.id)
    await update.message.reply_text(oracle.rephrase(f'Session "{session.name}" has ended.'))


async def _send_report(update: Update, session: Session) -> None:
    content = build_report(
        session,
        repo.list_members(session.id),
        repo.list_transactions(session.id),
        controller.settlement(session.id),
    )
    await update.effective_message.reply_document(
        document=content, filename=report_filename(session)
    )


@with_focused_session
async def export_command(update: Update, context: ContextTypes.DEFAULT_TYPE, session: Session):
    """Handle /export command and the export button."""
    if update.callback_query:
        await update.callback_query.answer("Building report...")
    await _send_report(update, session)


async def unknown_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    command = update.message.text.split()[0][1:].split("@")[0]
    suggestion = suggest_command(command)
    if suggestion:
        await update.message.reply_text(f"Unknown command. Did you mean /{suggestion}?")
    else:
        await update.message.reply_text("Unknown command. Type /help to see the list of commands.")


# ── Button callbacks ────────────────────────────────────────────


async def select_session(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    session_id = int(query.data.split(":")[1])
    session = repo.get_session(session_id)
    if session is None:
        await query.answer("This session was not found!", show_alert=True)
        return

    if session.status == "active":
        controller.set_focus(update.effective_chat.id, session.id)
        await query.answer(f'Session "{session.name}" selected.')
        await query.edit_message_text(
            f'✅ Session *"{_md(session.name)}"* is now active.', parse_mode="Markdown"
        )
        return

    await query.answer()
    buttons = InlineKeyboardMarkup(
        [[
            InlineKeyboardButton("🔄 Reopen", callback_data=f"reopen_session:{session.id}"),
            InlineKeyboardButton("📂 View report", callback_data=f"export_session:{session.id}"),
        ]]
    )
    await query.edit_message_text(
        f'Session *"{_md(session.name)}"* has ended. What would you like to do?',
        reply_markup=buttons,
        parse_mode="Markdown",
    )


async def reopen_session(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    session_id = int(query.data.split(":")[1])
    if repo.get_session(session_id) is None:
        await query.answer("This session was not found!", show_alert=True)
        return
    session = controller.reopen_session(session_id)
    controller.set_focus(update.effective_chat.id, session.id)
    await query.answer(f'Session "{session.name}" reopened.')
    await query.edit_message_text(
        f'✅ Session *"{_md(session.name)}"* has been reopened and is now active.',
        parse_mode="Markdown",
    )


async def export_session(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    session = repo.get_session(int(query.data.split(":")[1]))
    if session is None:
        await query.answer("Session not found.", show_alert=True)
        return
    await query.answer("Building report...")
    await _send_report(update, session)


async def delete_transaction(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    _, transaction_id, page = query.data.split(":")
    session = controller.get_focus(update.effective_chat.id)
    if session is None:
        await query.answer("Session not found.", show_alert=True)
        return
    try:
        repo.delete_transaction(session.id, int(transaction_id))
    except NotFoundError:
        await query.answer("That transaction is already gone.", show_alert=True)
    else:
        await query.answer("Transaction deleted!")
    await _show_transactions(update, session, int(page))


# ── Free text and photos ────────────────────────────────────────


async def _handle_payer_reply(update: Update, pending: OcrConfirmation) -> None:
    user_id, sender = _sender(update)
    payer = to_participant(update.message.text, sender, user_id)
    controller.set_pending(
        update.effective_chat.id,
        OcrAllocation(session_id=pending.session_id, receipt=pending.receipt, payer=payer),
    )
    await update.message.reply_text(
        f"Got it, {payer.display_name} paid. Now tell me who ate/drank what? "
        "(e.g. 'me satay, rio meatballs, the rest is shared')"
    )


async def _handle_allocation_reply(update: Update, pending: OcrAllocation) -> None:
    chat_id = update.effective_chat.id
    user_id, sender = _sender(update)

    session = repo.get_session(pending.session_id)
    if session is None:
        controller.clear_pending(chat_id)
        await update.message.reply_text("The session for this receipt no longer exists.")
        return

    await update.message.chat.send_action("typing")
    result = oracle.allocate_items(update.message.text, pending.receipt.items, sender)
    if not result.allocations:
        controller.clear_pending(chat_id)
        await update.message.reply_text(
            "Hmm, I couldn't work out the allocation. Let's cancel this one; try sending the receipt again."
        )
        return

    entries = [
        (pending.payer, to_participant(item.consumer, sender, user_id), item.price, item.item_name)
        for item in result.allocations
    ]
    # One batch write: on a store failure nothing is recorded and the pending
    # allocation stays, so resending the same reply is safe
    resolver.add_transactions(session.id, entries)
    controller.clear_pending(chat_id)
    await update.message.reply_text(
        oracle.rephrase("All receipt items have been allocated and recorded."),
        reply_markup=SUMMARY_BUTTON,
    )


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Handle incoming text messages — the main conversation entry point."""
    chat_id = update.effective_chat.id
    text = update.message.text.strip()
    user_id, sender = _sender(update)
    logger.info("Telegram message in chat {} from {}: {}", chat_id, sender, text)

    pending = controller.get_pending(chat_id)
    if isinstance(pending, OcrAllocation):
        await _handle_allocation_reply(update, pending)
        return
    if isinstance(pending, OcrConfirmation):
        await _handle_payer_reply(update, pending)
        return

    session = controller.get_focus(chat_id)
    await update.message.chat.send_action("typing")
    result = oracle.extract_transactions(text, sender)

    if result.is_transaction and result.transactions:
        if session is None or session.status != "active":
            await update.message.reply_text(
                oracle.rephrase("That looks like a transaction, but there is no active session. Create one first.")
            )
            return

        entries = [
            (
                to_participant(tx.payer, sender, user_id),
                to_participant(tx.consumer, sender, user_id),
                tx.amount,
                tx.description,
            )
            for tx in result.transactions
        ]
        resolver.add_transactions(session.id, entries)
        total = sum(tx.amount for tx in result.transactions)
        descriptions = [tx.description for tx in result.transactions]

        if total > 0:
            await update.message.reply_text(
                oracle.rephrase(
                    f"Transactions ({', '.join(descriptions)}) totalling {_format_money(total)} recorded."
                ),
                reply_markup=SUMMARY_BUTTON,
            )
    elif session is None:
        await _start_session(update, text)
    elif session.status != "active":
        await update.message.reply_text(
            f"Session '{session.name}' has ended. Use /sessions to reopen it or pick another one."
        )


@with_focused_session
async def handle_photo(update: Update, context: ContextTypes.DEFAULT_TYPE, session: Session):
    """Read a receipt photo and ask who paid for it."""
    chat_id = update.effective_chat.id
    await update.message.reply_text(oracle.rephrase("Okay, got the receipt. Let me read it first..."))
    await update.message.chat.send_action("upload_photo")

    photo_file = await update.message.photo[-1].get_file()
    image = bytes(await photo_file.download_as_bytearray())
    receipt = oracle.extract_receipt(image)

    if not receipt.success:
        await update.message.reply_text(
            oracle.rephrase("Oops, I can't read the receipt. Try a clearer photo.")
        )
        return

    controller.set_pending(chat_id, OcrConfirmation(session_id=session.id, receipt=receipt))
    store = f" from {receipt.store}" if receipt.store else ""
    await update.message.reply_text(
        f"Receipt{store} read, the total is {_format_money(receipt.total_amount)}. "
        "Who paid for it? (Type a name or 'me')"
    )


# ── Errors ──────────────────────────────────────────────────────


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Turn ledger errors into chat replies; log everything else for operators."""
    error = context.error
    if isinstance(error, NotFoundError):
        message = f"{error.kind} not found."
    elif isinstance(error, InvalidInputError):
        message = str(error)
    elif isinstance(error, StoreFailureError):
        logger.error("Store failure while handling update: {}", error)
        message = "Sorry, something went wrong while saving. Please try again."
    else:
        logger.opt(exception=error).error("Unhandled error while handling update: {}", error)
        message = "Hmm, I got a bit confused. Could you try again more clearly?"

    if isinstance(update, Update) and update.effective_chat:
        await context.bot.send_message(update.effective_chat.id, message)


def build_bot_app() -> Application:
    """Build and return the Telegram bot application."""
    app = Application.builder().token(settings.telegram_bot_token).build()

    # Command handlers
    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("sessions", sessions_command))
    app.add_handler(CommandHandler("list", list_command))
    app.add_handler(CommandHandler("split", split_command))
    app.add_handler(CommandHandler("settlement", settlement_command))
    app.add_handler(CommandHandler("end", end_command))
    app.add_handler(CommandHandler("export", export_command))

    # Inline keyboard callbacks
    app.add_handler(CallbackQueryHandler(select_session, pattern=r"^select_session:\d+$"))
    app.add_handler(CallbackQueryHandler(reopen_session, pattern=r"^reopen_session:\d+$"))
    app.add_handler(CallbackQueryHandler(export_session, pattern=r"^export_session:\d+$"))
    app.add_handler(CallbackQueryHandler(delete_transaction, pattern=r"^delete_tx:\d+:\d+$"))
    app.add_handler(CallbackQueryHandler(list_command, pattern=r"^list_page:\d+$"))
    app.add_handler(CallbackQueryHandler(split_command, pattern=r"^show_split$"))
    app.add_handler(CallbackQueryHandler(settlement_command, pattern=r"^show_settlement$"))
    app.add_handler(CallbackQueryHandler(export_command, pattern=r"^show_export$"))

    # Message handlers
    app.add_handler(MessageHandler(filters.StatusUpdate.NEW_CHAT_MEMBERS, new_members))
    app.add_handler(MessageHandler(filters.COMMAND, unknown_command))
    app.add_handler(MessageHandler(filters.PHOTO, handle_photo))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    app.add_error_handler(error_handler)

    return app
