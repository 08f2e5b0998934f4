from app.schemas.index import CurrentIndexResponse, IndexHistoryResponse, IndexPointOut, MessageResponse
from app.schemas.backtest import BacktestParamsOut, BacktestResponse, BacktestSummaryOut
