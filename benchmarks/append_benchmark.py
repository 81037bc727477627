import tempfile
import time
import numpy as np
import concurrent.futures
from pathlib import Path
from auditchain.audit.log import AuditLog
from auditchain.audit.rotating_sink import RotatingFileSink
from auditchain.audit.sqlite_store import SQLiteRecordStore
from auditchain.common.config.features import FeatureToggles

FEATURES = FeatureToggles(overrides={"audit": True, "logger": True})
PAYLOAD = {"method": "password", "mfa": True, "attempt": 1}

def create_sqlite_log(workdir):
    return AuditLog(SQLiteRecordStore(Path(workdir) / "audit.db"), features=FEATURES)

def create_sink(workdir):
    return RotatingFileSink(Path(workdir) / "security", max_bytes=1_000_000, features=FEATURES)

def report(latencies):
    print(f"  Mean:   {np.mean(latencies):.2f} ms")
    print(f"  Median: {np.median(latencies):.2f} ms")
    print(f"  P95:    {np.percentile(latencies, 95):.2f} ms")
    print(f"  P99:    {np.percentile(latencies, 99):.2f} ms")
    print("-" * 40)

def run_latency_benchmark(name, append, iterations=500):
    print(f"--- {name} Append Latency ({iterations} iterations) ---")

    latencies = []

    # Warmup
    append()

    for i in range(iterations):
        start_time = time.perf_counter()
        append()
        end_time = time.perf_counter()

        latencies.append((end_time - start_time) * 1000)

        if (i + 1) % 100 == 0:
            print(f"  Completed {i + 1}/{iterations} appends")

    print("\nLatency Results:")
    report(latencies)
    return latencies

def run_throughput_benchmark(name, append, total_appends=2000, concurrent_writers=8):
    print(f"\n--- {name} Throughput ({total_appends} appends, {concurrent_writers} concurrent) ---")

    start_time = time.perf_counter()

    with concurrent.futures.ThreadPoolExecutor(max_workers=concurrent_writers) as executor:
        futures = [executor.submit(append) for _ in range(total_appends)]
        concurrent.futures.wait(futures)

    total_time = time.perf_counter() - start_time
    throughput = total_appends / total_time

    print(f"\nThroughput Results:")
    print(f"  Total Time: {total_time:.2f} s")
    print(f"  Throughput: {throughput:.2f} appends/sec")
    print("-" * 40)
    return throughput

if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as workdir:
        audit_log = create_sqlite_log(workdir)
        sqlite_append = lambda: audit_log.append("user_bench_001", "login.success", PAYLOAD, origin="192.168.1.1")
        run_latency_benchmark("SQLite", sqlite_append)
        run_throughput_benchmark("SQLite", sqlite_append)
        print(f"SQLite chain valid: {audit_log.verify_integrity().is_valid}\n")

        sink = create_sink(workdir)
        sink_append = lambda: sink.append("login.failed", PAYLOAD, actor_id="user_bench_001", origin="192.168.1.1")
        run_latency_benchmark("Rotating sink", sink_append)
        run_throughput_benchmark("Rotating sink", sink_append)
        print(f"Sink chain valid: {sink.verify_integrity().is_valid}")
