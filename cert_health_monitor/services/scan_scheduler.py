"""
扫描调度服务
"""
import logging
import threading
from dataclasses import replace
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import timedelta
from typing import Dict, List, Optional, Set, Tuple

from ..interfaces import CertificateProberInterface, DomainRegistryInterface
from ..models import CertificateRecord, Domain, ProbeResult, ScanAttempt, ScanState, SweepResult
from .clock import SystemClock
from .logger import LoggerService
from .rate_limiter import RateLimiter
from .result_sink import ResultSink


class _ScanControl:
    """一次扫描（全量或单域名）的取消控制

    取消之后不再开始新的记录写入；cancel() 会等待已经开始的写入完成。
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._cancelled = False
        self._writers = 0
        self._committed: Set[str] = set()

    @property
    def cancelled(self) -> bool:
        with self._cond:
            return self._cancelled

    @property
    def committed(self) -> Set[str]:
        """已经开始写入记录的域名ID"""
        with self._cond:
            return set(self._committed)

    def begin_write(self, domain_id: str) -> bool:
        with self._cond:
            if self._cancelled:
                return False
            self._writers += 1
            self._committed.add(domain_id)
            return True

    def end_write(self):
        with self._cond:
            self._writers -= 1
            self._cond.notify_all()

    def cancel(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            self._cancelled = True
            return self._cond.wait_for(lambda: self._writers == 0, timeout=timeout)


class ScanScheduler:
    """证书扫描调度器

    负责定时全量扫描和按需单域名扫描：有界并发、探测节流、
    同一域名同一时间最多一个扫描、单个域名失败不影响其他域名。
    """

    def __init__(self, registry: DomainRegistryInterface, prober: CertificateProberInterface,
                 sink: ResultSink, clock: Optional[SystemClock] = None,
                 interval: timedelta = timedelta(hours=12), max_workers: int = 10,
                 port: int = 443, probe_timeout: float = 10.0,
                 rate_limiter: Optional[RateLimiter] = None,
                 sweep_timeout: Optional[float] = None,
                 logger_service: Optional[LoggerService] = None):
        """
        初始化扫描调度器

        Args:
            registry: 域名注册表
            prober: 证书探测器
            sink: 结果写入服务
            clock: 时钟，测试时可注入假时钟
            interval: 定时全量扫描的间隔，默认12小时
            max_workers: 并发探测数量上限
            port: 探测端口
            probe_timeout: 单次探测超时时间（秒）
            rate_limiter: 探测节流器，为None时不节流
            sweep_timeout: 全量扫描的总超时时间（秒），为None时不限制
            logger_service: 日志服务
        """
        if max_workers < 1:
            raise ValueError(f"max_workers必须大于0: {max_workers}")
        if interval.total_seconds() <= 0:
            raise ValueError(f"扫描间隔必须为正数: {interval}")

        self.registry = registry
        self.prober = prober
        self.sink = sink
        self.clock = clock or SystemClock()
        self.interval = interval
        self.max_workers = max_workers
        self.port = port
        self.probe_timeout = probe_timeout
        self.rate_limiter = rate_limiter
        self.sweep_timeout = sweep_timeout
        self.logger_service = logger_service or LoggerService()
        self.logger = logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._in_flight: Dict[str, ScanAttempt] = {}
        self._sweep_controls: Set[_ScanControl] = set()
        self._scan_controls: Set[_ScanControl] = set()

        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None

    # 生命周期

    @property
    def is_running(self) -> bool:
        return self._timer_thread is not None and self._timer_thread.is_alive()

    def start(self):
        """启动定时扫描（立即执行一次，之后按间隔执行）"""
        with self._lock:
            if self._timer_thread is not None and self._timer_thread.is_alive():
                self.logger.warning("定时扫描已在运行，忽略重复启动")
                return
            self._stop_event.clear()
            self._timer_thread = threading.Thread(
                target=self._run_loop, name="cert-sweep-timer", daemon=True
            )
            self._timer_thread.start()

        self.logger_service.logger.info(
            f"定时扫描已启动，间隔 {self.interval.total_seconds() / 3600:.1f} 小时，"
            f"并发上限 {self.max_workers}"
        )

    def stop(self, timeout: Optional[float] = None):
        """
        停止定时扫描，取消进行中的扫描并关闭工作线程池

        Args:
            timeout: 等待定时线程退出的最长时间（秒）
        """
        self._stop_event.set()
        self._cancel_controls(include_scans=True)

        thread = self._timer_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)

        self.logger_service.logger.info("定时扫描已停止")

    def cancel_sweep(self):
        """取消正在进行的全量扫描（进行中的探测结果会被丢弃）"""
        self._cancel_controls(include_scans=False)

    def _run_loop(self):
        interval_seconds = self.interval.total_seconds()
        while not self._stop_event.is_set():
            # 间隔从扫描开始计算，扫描耗时不会推迟下一次扫描
            started = self.clock.monotonic()
            try:
                self.run_sweep()
            except Exception as e:
                self.logger_service.log_error("*", e)
            elapsed = self.clock.monotonic() - started
            if self.clock.wait(self._stop_event, max(0.0, interval_seconds - elapsed)):
                break

    # 全量扫描

    def run_sweep(self, timeout: Optional[float] = None) -> SweepResult:
        """
        执行一次全量扫描

        在开始时对活跃域名做一次快照，每个域名最多探测一次；
        扫描过程中新增的域名留给下一次扫描。

        Args:
            timeout: 总超时时间（秒），为None时使用 sweep_timeout

        Returns:
            SweepResult: 扫描结果
        """
        started = self.clock.monotonic()
        timeout = timeout if timeout is not None else self.sweep_timeout

        try:
            domains = list(self.registry.list_all_active_domains())
        except Exception as e:
            self.logger_service.log_error("*", e)
            return SweepResult(
                total_domains=0,
                recorded=0,
                successful_checks=0,
                failed_checks=0,
                skipped=0,
                cancelled=0,
                errors=[f"获取域名列表失败: {type(e).__name__}: {str(e)}"],
                execution_time=self.clock.monotonic() - started
            )

        if not domains:
            self.logger_service.logger.warning("没有找到要扫描的域名")

        control = _ScanControl()
        with self._lock:
            self._sweep_controls.add(control)

        try:
            self.logger_service.log_sweep_start(len(domains))
            futures, skipped = self._submit_all(domains, control)

            done, not_done = wait(list(futures), timeout=timeout)
            if not_done:
                self.logger_service.logger.warning(
                    f"全量扫描超时（{timeout} 秒），放弃 {len(not_done)} 个未完成的探测"
                )
                control.cancel(timeout=self.probe_timeout)
                for future in not_done:
                    if future.cancel():
                        self._finish(futures[future][1])

                # 超时前已经开始写入的记录照常计入结果
                committed = control.committed
                writing = [f for f in not_done if futures[f][0].id in committed]
                if writing:
                    wait(writing, timeout=self.probe_timeout)
                finished = {f for f in not_done if f.done() and not f.cancelled()}
                done = done | finished
                not_done = not_done - finished

            result = self._collect(futures, done, not_done, len(domains), skipped)
        finally:
            with self._lock:
                self._sweep_controls.discard(control)

        result.execution_time = self.clock.monotonic() - started
        self.logger_service.log_sweep_end(result)
        self.logger_service.log_execution_summary(result)
        return result

    def _submit_all(self, domains: List[Domain], control: _ScanControl):
        futures: Dict[Future, Tuple[Domain, ScanAttempt]] = {}
        skipped = 0
        executor = self._get_executor()

        for domain in domains:
            attempt = self._begin(domain)
            if attempt is None:
                skipped += 1
                self.logger_service.logger.info(f"域名 {domain.hostname} 已有扫描在进行，本次跳过")
                continue
            try:
                future = executor.submit(self._execute, domain, attempt, control)
            except RuntimeError:
                # 线程池已关闭（调度器正在停止）
                attempt.state = ScanState.CANCELLED
                self._finish(attempt)
                continue
            futures[future] = (domain, attempt)

        return futures, skipped

    def _collect(self, futures, done, not_done, total: int, skipped: int) -> SweepResult:
        now = self.clock.now()
        recorded = successful = failed = 0
        cancelled = len(not_done) + (total - skipped - len(futures))
        errors: List[str] = []
        tier_counts: Dict[str, int] = {}

        for future in done:
            domain, attempt = futures[future]
            if future.cancelled():
                self._finish(attempt)
                cancelled += 1
                continue

            error = future.exception()
            if error is not None:
                self.logger_service.log_error(domain.hostname, error)
                errors.append(f"{domain.hostname}: {type(error).__name__}: {str(error)}")
                continue

            record = future.result()
            if record is None:
                cancelled += 1
                continue

            recorded += 1
            if record.is_valid:
                successful += 1
            else:
                failed += 1
                errors.append(f"{domain.hostname}: {record.error}")

            tier = self.sink.classifier.classify(record, now).value
            tier_counts[tier] = tier_counts.get(tier, 0) + 1

        return SweepResult(
            total_domains=total,
            recorded=recorded,
            successful_checks=successful,
            failed_checks=failed,
            skipped=skipped,
            cancelled=cancelled,
            errors=errors,
            execution_time=0.0,
            tier_counts=tier_counts
        )

    # 按需扫描

    def submit_scan(self, domain: Domain) -> Optional[Future]:
        """
        提交单域名扫描到工作线程池

        Args:
            domain: 要扫描的域名

        Returns:
            Optional[Future]: 扫描任务，域名已有扫描在进行时返回None
        """
        attempt = self._begin(domain)
        if attempt is None:
            self.logger_service.logger.info(f"域名 {domain.hostname} 已有扫描在进行，忽略按需扫描")
            return None

        control = _ScanControl()
        with self._lock:
            self._scan_controls.add(control)

        def _done(_future):
            with self._lock:
                self._scan_controls.discard(control)
            if _future.cancelled():
                self._finish(attempt)
            elif _future.exception() is not None:
                self.logger_service.log_error(domain.hostname, _future.exception())

        try:
            future = self._get_executor().submit(self._execute, domain, attempt, control)
        except RuntimeError:
            attempt.state = ScanState.CANCELLED
            self._finish(attempt)
            with self._lock:
                self._scan_controls.discard(control)
            raise

        future.add_done_callback(_done)
        return future

    def scan_domain(self, domain: Domain) -> Optional[CertificateRecord]:
        """
        同步执行单域名扫描

        Args:
            domain: 要扫描的域名

        Returns:
            Optional[CertificateRecord]: 写入的记录；域名已有扫描在进行或扫描被取消时为None
        """
        future = self.submit_scan(domain)
        if future is None:
            return None
        return future.result()

    def on_domain_created(self, domain: Domain) -> Optional[Future]:
        """新域名注册事件：立即发起一次按需扫描"""
        self.logger_service.logger.info(f"新域名 {domain.hostname} 已注册，立即扫描")
        return self.submit_scan(domain)

    def in_flight_domains(self) -> List[ScanAttempt]:
        """当前进行中的扫描快照（副本，不随工作线程更新）"""
        with self._lock:
            return [replace(attempt) for attempt in self._in_flight.values()]

    # 内部实现

    def _execute(self, domain: Domain, attempt: ScanAttempt,
                 control: _ScanControl) -> Optional[CertificateRecord]:
        """
        在工作线程中探测单个域名并写入结果

        Args:
            domain: 域名
            attempt: 本次扫描
            control: 取消控制

        Returns:
            Optional[CertificateRecord]: 写入的记录，扫描被取消时为None
        """
        try:
            if control.cancelled:
                attempt.state = ScanState.CANCELLED
                return None

            if self.rate_limiter is not None:
                self.rate_limiter.acquire(domain.hostname)
                if control.cancelled:
                    attempt.state = ScanState.CANCELLED
                    return None

            attempt.state = ScanState.PROBING
            outcome = self.prober.probe(domain.hostname, port=self.port, timeout=self.probe_timeout)
            attempt.state = ScanState.SUCCEEDED if isinstance(outcome, ProbeResult) else ScanState.FAILED

            if not control.begin_write(domain.id):
                attempt.state = ScanState.CANCELLED
                self.logger.debug(f"扫描已取消，丢弃域名 {domain.hostname} 的探测结果")
                return None
            try:
                record = self.sink.record_outcome(domain, outcome, self.clock.now())
            finally:
                control.end_write()

            attempt.state = ScanState.RECORDED
            tier = self.sink.classifier.classify(record, self.clock.now())
            self.logger_service.log_probe_outcome(domain, record, tier)
            return record
        finally:
            self._finish(attempt)

    def _begin(self, domain: Domain) -> Optional[ScanAttempt]:
        with self._lock:
            if domain.id in self._in_flight:
                return None
            attempt = ScanAttempt(domain_id=domain.id, started_at=self.clock.now())
            self._in_flight[domain.id] = attempt
            return attempt

    def _finish(self, attempt: ScanAttempt):
        with self._lock:
            if self._in_flight.get(attempt.domain_id) is attempt:
                del self._in_flight[attempt.domain_id]

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="cert-probe"
                )
            return self._executor

    def _cancel_controls(self, include_scans: bool):
        with self._lock:
            controls = list(self._sweep_controls)
            if include_scans:
                controls.extend(self._scan_controls)
        for control in controls:
            control.cancel(timeout=self.probe_timeout)
