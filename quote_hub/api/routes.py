from fastapi import APIRouter, HTTPException, Request

from quote_hub.schemas.provider import DefaultProviderRequest
from quote_hub.schemas.quote import BatchQuoteRequest, SymbolValidateRequest
from quote_hub.services.symbols import is_valid_symbol_format, normalize_symbol, unique_symbols

router = APIRouter()

_MAX_BATCH_SYMBOLS = 50


def _manager(request: Request):
    return request.app.state.quote_manager


def _batch_response(requested: list[str], quotes: dict) -> dict:
    return {
        'quotes': {symbol: quote.model_dump(mode='json') for symbol, quote in quotes.items()},
        'missing': [symbol for symbol in requested if symbol not in quotes],
    }


def _checked_symbols(symbols: list[str]) -> list[str]:
    wanted = unique_symbols(symbols)
    if not wanted:
        raise HTTPException(status_code=400, detail='SYMBOLS_REQUIRED')
    if len(wanted) > _MAX_BATCH_SYMBOLS:
        raise HTTPException(status_code=400, detail='TOO_MANY_SYMBOLS')
    return wanted


@router.get('/quotes/{symbol}')
async def get_quote(
    symbol: str,
    request: Request,
    preferred_provider: str | None = None,
    allow_fallback: bool = True,
):
    quote = await _manager(request).fetch_quote(
        symbol, preferred_provider=preferred_provider, allow_fallback=allow_fallback
    )
    if quote is None:
        raise HTTPException(status_code=404, detail='SYMBOL_NOT_FOUND')
    return quote.model_dump(mode='json')


@router.get('/quotes')
async def get_quotes(
    symbols: str,
    request: Request,
    preferred_provider: str | None = None,
    allow_fallback: bool = True,
):
    wanted = _checked_symbols(symbols.split(','))
    quotes = await _manager(request).fetch_multiple_quotes(
        wanted, preferred_provider=preferred_provider, allow_fallback=allow_fallback
    )
    return _batch_response(wanted, quotes)


@router.post('/quotes/batch')
async def post_quotes_batch(req: BatchQuoteRequest, request: Request):
    wanted = _checked_symbols(req.symbols)
    quotes = await _manager(request).fetch_multiple_quotes(
        wanted,
        preferred_provider=req.preferred_provider,
        allow_fallback=req.allow_fallback,
        max_concurrency=req.max_concurrency,
    )
    return _batch_response(wanted, quotes)


@router.post('/symbols/validate')
async def validate_symbol(req: SymbolValidateRequest, request: Request):
    symbol = normalize_symbol(req.symbol)
    if not is_valid_symbol_format(symbol):
        raise HTTPException(status_code=400, detail='INVALID_SYMBOL_FORMAT')

    quote = await _manager(request).fetch_quote(symbol, preferred_provider=req.preferred_provider)
    if quote is None:
        return {'valid': False, 'symbol': symbol, 'name': None, 'price': None, 'provider': None}
    return {
        'valid': True,
        'symbol': symbol,
        'name': quote.name,
        'price': quote.price,
        'provider': quote.provider,
    }


@router.get('/symbols/search')
async def search_symbols(q: str, request: Request, preferred_provider: str | None = None):
    query = q.strip()
    if not query:
        raise HTTPException(status_code=400, detail='QUERY_REQUIRED')
    results = await _manager(request).search_symbols(query, preferred_provider=preferred_provider)
    return {
        'query': query,
        'results': [match.model_dump() for match in results],
        'count': len(results),
    }


@router.get('/providers/status')
def get_provider_status(request: Request):
    manager = _manager(request)
    return {
        'providers': [status.model_dump(mode='json') for status in manager.get_provider_status().values()],
        'config': manager.get_config().model_dump(),
    }


@router.post('/providers/default')
def set_default_provider(req: DefaultProviderRequest, request: Request):
    manager = _manager(request)
    if not manager.set_default_provider(req.name):
        raise HTTPException(status_code=404, detail='PROVIDER_NOT_FOUND')
    return {'success': True, 'order': manager.get_provider_names()}


@router.post('/providers/{name}/reset')
def reset_provider(name: str, request: Request):
    if not _manager(request).reset_error_tracking(name):
        raise HTTPException(status_code=404, detail='PROVIDER_NOT_FOUND')
    return {'success': True, 'provider': name}


@router.post('/providers/health-check')
async def run_health_checks(request: Request):
    results = await _manager(request).run_health_checks()
    return {
        'results': results,
        'healthy': sum(results.values()),
        'total': len(results),
    }


@router.post('/cache/clear')
def clear_cache(request: Request):
    manager = _manager(request)
    manager.clear_cache()
    return {'success': True, 'cache': manager.cache_stats()}


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    return _manager(request).metrics()
