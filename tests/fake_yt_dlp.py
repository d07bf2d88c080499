"""
Stand-in for yt-dlp used by the tests.

Download behaviour is driven by query parameters on each URL:
steps, delay, exit, sleep, warn, ignore_term and fail (for -J).
"""
import json
import signal
import sys
import time
from urllib.parse import parse_qs, urlparse


def params(url):
    return {key: values[-1] for key, values in parse_qs(urlparse(url).query).items()}


def main(argv):
    if '--version' in argv:
        print('2024.08.06')
        return 0

    urls = [arg for arg in argv if arg.startswith(('http://', 'https://'))]

    if '-J' in argv:
        for url in urls:
            if params(url).get('fail'):
                print(f'ERROR: [generic] Unsupported URL: {url}', file=sys.stderr)
                return 1
            print(json.dumps({'id': urlparse(url).path.strip('/'), 'webpage_url': url}))
        return 0

    exit_code = 0
    for url in urls:
        opts = params(url)
        if opts.get('ignore_term'):
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
        steps = int(opts.get('steps', 3))
        delay = float(opts.get('delay', 0.01))
        sys.stdout.write(f'[download] Destination: {urlparse(url).path.strip("/")}.mp4\n')
        for step in range(steps + 1):
            percent = 100.0 * step / steps if steps else 100.0
            sys.stdout.write(f'\r[download] {percent:5.1f}% of 10.00MiB at 1.00MiB/s')
            sys.stdout.flush()
            time.sleep(delay)
        sys.stdout.write('\n')
        sys.stdout.flush()
        if opts.get('warn'):
            sys.stderr.write('WARNING: fake warning for testing\n')
            sys.stderr.flush()
        time.sleep(float(opts.get('sleep', 0)))
        exit_code = max(exit_code, int(opts.get('exit', 0)))
    return exit_code


if __name__ == '__main__':
    sys.exit(main(sys.argv[1:]))
