from sendsafe.worker.main import run

run()
