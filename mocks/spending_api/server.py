"""
Mock spending API server serving the transactions endpoint.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, Query
from fastapi.responses import JSONResponse

from shared.logging import get_logger


def generate_transactions(
    recipient_code: str,
    start_date: date,
    count: int,
    start_id: int = 1,
    days: int = 1
) -> List[Dict[str, Any]]:
    """Generate sample transactions in (doc_date, id) order over ``days`` days from start_date."""
    transactions = []
    for offset in range(count):
        doc_date = start_date + timedelta(days=offset * days // count)
        transaction_id = start_id + offset
        transactions.append({
            "id": transaction_id,
            "doc_vob": "6",
            "doc_vob_name": "Платіжне доручення",
            "doc_number": f"DOC-{transaction_id}",
            "doc_date": doc_date.isoformat(),
            "doc_v_date": doc_date.isoformat(),
            "trans_date": doc_date.isoformat(),
            "amount": round(1000 + transaction_id * 12.5, 2),
            "amount_cop": int((1000 + transaction_id * 12.5) * 100),
            "currency": "UAH",
            "payer_edrpou": "02010936",
            "payer_name": "Державна казначейська служба",
            "payer_account": "UA000000000000000000000000001",
            "payer_mfo": "820172",
            "payer_bank": "ДКСУ",
            "recipt_edrpou": recipient_code,
            "recipt_name": f"Recipient {recipient_code}",
            "recipt_account": "UA000000000000000000000000002",
            "recipt_mfo": "820172",
            "recipt_bank": "ДКСУ",
            "payment_details": f"Payment {transaction_id}",
            "region_id": 26,
            "source_id": 1,
            "source_name": "mock",
            "kekv": 2240,
            "kpk": "3511010",
            "budgetCode": "26000000000"
        })
    return transactions


class MockSpendingApiServer:
    """Mock spending API implementation."""

    def __init__(self, port: int = 8090):
        self.port = port
        self.logger = get_logger("mock.spending_api")
        self.app = FastAPI(title="Mock Spending API", version="1.0.0")

        # In-memory storage
        self.transactions: List[Dict[str, Any]] = []
        self.request_count = 0
        self.fail_with_status: Optional[int] = None

        self._setup_routes()

    def load(self, transactions: List[Dict[str, Any]]):
        """Replace the served transactions."""
        self.transactions = list(transactions)

    def query(self, recipient_codes: List[str], start_date: date, end_date: date) -> List[Dict[str, Any]]:
        """Transactions matching the recipients and inclusive date range."""
        return [
            tx for tx in self.transactions
            if tx.get("recipt_edrpou") in recipient_codes
            and start_date <= date.fromisoformat(tx["doc_date"]) <= end_date
        ]

    def _setup_routes(self):
        """Set up mock spending API routes."""

        @self.app.api_route("/", methods=["GET", "HEAD"])
        async def root():
            """Root endpoint."""
            return {"service": "mock-spending-api", "transactions": len(self.transactions)}

        @self.app.get("/transactions/")
        async def get_transactions(
            recipt_edrpous: List[str] = Query(...),
            startdate: date = Query(...),
            enddate: date = Query(...)
        ):
            """List transactions for recipients within a date range."""
            self.request_count += 1

            if self.fail_with_status is not None:
                self.logger.info("Returning injected failure", status_code=self.fail_with_status)
                return JSONResponse(
                    status_code=self.fail_with_status,
                    content={"error": "Injected failure"}
                )

            matches = self.query(recipt_edrpous, startdate, enddate)
            self.logger.info(
                "Serving transactions",
                recipient_codes=recipt_edrpous,
                count=len(matches)
            )
            return matches

        @self.app.post("/_admin/transactions")
        async def load_transactions(transactions: List[Dict[str, Any]] = Body(...)):
            """Replace the served transactions."""
            self.load(transactions)
            return {"loaded": len(self.transactions)}

        @self.app.post("/_admin/failure")
        async def set_failure(status_code: Optional[int] = Body(None, embed=True)):
            """Make every transactions request fail with the given status (null clears)."""
            self.fail_with_status = status_code
            return {"fail_with_status": self.fail_with_status}

        @self.app.get("/_admin/stats")
        async def get_stats():
            """Request statistics."""
            return {"requests": self.request_count, "transactions": len(self.transactions)}


def create_app():
    """Create mock spending API application."""
    server = MockSpendingApiServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    server = MockSpendingApiServer()
    server.load(generate_transactions("00013480", date.today() - timedelta(days=2), 15, days=3))
    uvicorn.run(server.app, host="0.0.0.0", port=server.port)
