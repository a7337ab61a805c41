"""Kuyruk ve analiz hattının hata sınıfları."""


class ChartlineError(Exception):
    """Tüm alan hatalarının tabanı."""


class SourceUnavailable(ChartlineError):
    """Görsel ne kaynaktan ne önbellekten alınabildi; iş tekrar denenmez."""


class AnalysisTimeout(ChartlineError):
    """Analiz deadline içinde yanıt vermedi; işleyicide kurtarma denemesine veya fallback sonuca çevrilir."""


class AnalysisRetryable(ChartlineError):
    """Upstream geçici hata verdi (429 / 5xx); iş kuyruğa geri alınabilir."""


class AnalysisFatal(ChartlineError):
    """Tekrar denemenin anlamsız olduğu analiz hatası (auth, bozuk yanıt vb.)."""


class StoreUnavailable(ChartlineError):
    """Veritabanı hatası; mevcut çağrı için ölümcül, üst katmana iletilir."""
