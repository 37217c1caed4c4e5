import threading


class Poller(threading.Thread):
    def __init__(self, interval, execute, *args, **kwargs):
        threading.Thread.__init__(self)
        # daemon thread so a forgotten stop() never blocks interpreter exit
        self.daemon = True
        self.stopped = threading.Event()
        self.interval = interval
        self.execute = execute
        self.args = args
        self.kwargs = kwargs

    def stop(self):
        self.stopped.set()
        if self.is_alive():
            self.join()

    def run(self):
        while not self.stopped.wait(self.interval):
            self.execute(*self.args, **self.kwargs)
