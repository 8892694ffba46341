import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from sqlalchemy.orm import Session

from auth import resolve_user_token, token_from_header
from config import get_settings
from database import get_db
from errors import InternalFailure, InvalidRequest, NotFound, Unauthorized
from models import Category, Expense, Income, Receipt
from money import to_amount
from periods import MONTHLY, local_today, parse_month, parse_year
from record_store import RecordStore
from scheduler import SchedulerManager
from schemas import CategoryIn, ExpenseIn, IncomeIn, ReceiptIn
from services import (
    BalanceLedgerService,
    CategoryService,
    DailyBalanceService,
    ExpenseService,
    IncomeService,
    ReceiptService,
    SummaryService,
    balance_to_dict,
    user_ledger_lock,
)

logging.basicConfig(level=get_settings().log_level)

app = FastAPI(title="Finance Ledger")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    try:
        return resolve_user_token(token_from_header(authorization))
    except Unauthorized as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


def optional_year_month(request: Request) -> tuple[Optional[int], Optional[int]]:
    year = request.query_params.get("year")
    month = request.query_params.get("month")
    try:
        parsed_year = parse_year(year) if year else None
        parsed_month = parse_month(month) if month else None
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if parsed_month is not None and parsed_year is None:
        raise HTTPException(status_code=400, detail="Month requires a year")
    return parsed_year, parsed_month


def category_to_dict(category: Category) -> dict[str, object]:
    return {"id": category.id, "name": category.name}


def income_to_dict(income: Income) -> dict[str, object]:
    return {
        "id": income.id,
        "source": income.source,
        "amount": to_amount(income.amount_cents),
        "date": income.date.isoformat(),
        "isRecurring": income.is_recurring,
        "recurrenceInterval": (
            income.recurrence_interval.value if income.recurrence_interval else None
        ),
        "recurrenceEnd": (
            income.recurrence_end.isoformat() if income.recurrence_end else None
        ),
        "note": income.note,
    }


def expense_to_dict(expense: Expense) -> dict[str, object]:
    return {
        "id": expense.id,
        "categoryId": expense.category_id,
        "category": expense.category.name if expense.category else None,
        "description": expense.description,
        "amount": to_amount(expense.amount_cents),
        "date": expense.date.isoformat(),
        "isRecurring": expense.is_recurring,
        "recurrenceInterval": (
            expense.recurrence_interval.value if expense.recurrence_interval else None
        ),
        "recurrenceEnd": (
            expense.recurrence_end.isoformat() if expense.recurrence_end else None
        ),
        "note": expense.note,
    }


def receipt_to_dict(receipt: Receipt) -> dict[str, object]:
    return {
        "id": receipt.id,
        "storeName": receipt.store_name,
        "date": receipt.date.isoformat(),
        "items": [
            {
                "id": item.id,
                "name": item.name,
                "category": item.category.name,
                "date": item.date.isoformat(),
                "netEffect": item.net_effect.value,
                "amount": to_amount(item.amount_cents),
            }
            for item in receipt.items
        ],
    }


@app.get("/balances/category-summary")
def category_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    params = request.query_params
    mode = params.get("mode") or MONTHLY
    try:
        summaries = SummaryService(db, user_id).get_summary(
            mode,
            year=params.get("year"),
            month=params.get("month"),
            start=params.get("startDate"),
            end=params.get("endDate"),
        )
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InternalFailure as exc:
        logging.exception("Failed to fetch financial data")
        raise HTTPException(
            status_code=500, detail="Failed to fetch financial data"
        ) from exc
    return {"mode": mode, "data": [summary.to_dict() for summary in summaries]}


@app.get("/balances/yearly-summary")
def yearly_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        year = parse_year(request.query_params.get("year"))
        return SummaryService(db, user_id).yearly_balance(year)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InternalFailure as exc:
        logging.exception("Failed to fetch yearly summary")
        raise HTTPException(
            status_code=500, detail="Failed to fetch yearly summary"
        ) from exc


@app.get("/balances/daily")
def daily_balances(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    month = request.query_params.get("month")
    year = request.query_params.get("year")
    if not month or not year:
        raise HTTPException(status_code=400, detail="Month and year are required")
    try:
        return DailyBalanceService(db, user_id).daily_balances(
            parse_year(year), parse_month(month)
        )
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InternalFailure as exc:
        logging.exception("Failed to fetch daily balances")
        raise HTTPException(
            status_code=500, detail="Failed to fetch daily balances"
        ) from exc


@app.post("/balances/initialize")
def initialize_balances(
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        with user_ledger_lock(user_id):
            entries = BalanceLedgerService(db, user_id).update_balances(local_today())
    except InternalFailure as exc:
        raise HTTPException(
            status_code=500, detail=f"Failed to initialize balances: {exc}"
        ) from exc
    first, last = entries[0], entries[-1]
    return {
        "message": "Balances initialized successfully",
        "monthsProcessed": len(entries),
        "firstMonth": f"{first.year:04d}-{first.month:02d}",
        "lastMonth": f"{last.year:04d}-{last.month:02d}",
    }


@app.get("/balances")
def list_balances(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year, month = optional_year_month(request)
    entries = RecordStore(db, user_id).ledger_entries(year=year, month=month)
    return [balance_to_dict(entry) for entry in entries]


@app.get("/categories")
def list_categories(
    user_id: int = Depends(current_user_id), db: Session = Depends(get_db)
):
    return [category_to_dict(c) for c in CategoryService(db, user_id).list_all()]


@app.post("/categories", status_code=201)
def create_category(
    data: CategoryIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).create(data)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return category_to_dict(category)


@app.get("/incomes")
def list_incomes(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year, month = optional_year_month(request)
    incomes = IncomeService(db, user_id).list(year=year, month=month)
    return [income_to_dict(income) for income in incomes]


@app.post("/incomes", status_code=201)
def create_income(
    data: IncomeIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    return income_to_dict(IncomeService(db, user_id).create(data))


@app.delete("/incomes/{income_id}")
def delete_income(
    income_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        IncomeService(db, user_id).delete(income_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Income deleted successfully"}


@app.get("/expenses")
def list_expenses(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    year, month = optional_year_month(request)
    expenses = ExpenseService(db, user_id).list(year=year, month=month)
    return [expense_to_dict(expense) for expense in expenses]


@app.post("/expenses", status_code=201)
def create_expense(
    data: ExpenseIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        expense = ExpenseService(db, user_id).create(data)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return expense_to_dict(expense)


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        ExpenseService(db, user_id).delete(expense_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Expense deleted successfully"}


@app.post("/receipts", status_code=201)
def ingest_receipt(
    data: ReceiptIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        receipt = ReceiptService(db, user_id).ingest(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return receipt_to_dict(receipt)
