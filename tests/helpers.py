"""Shared test helpers: canned responses, fragmenting, a fake clock."""

VALID_RESPONSE = """===NAME===
Todo App
===DESCRIPTION===
A simple todo list
===APP_TYPE===
FRONTEND_ONLY
===FILE:src/App.tsx===
export default function App() {
  return <div>Hello</div>;
}
===DEPENDENCIES===
react: ^18.2.0
===SETUP===
npm install && npm run dev
===END==="""

TRUNCATED_RESPONSE = """===NAME===
Todo App
===DESCRIPTION===
A simple todo list
===FILE:src/utils.ts===
export function add(a: number, b: number) {
  return a + b;
}
===FILE:src/App.tsx===
export default function App() {
  if (true) {
    for (;;) {
      while (x) {
        const y = { a: 1 };"""


def fragments(text, size=7):
    """Split text into fixed-size fragments, the way a provider streams it."""
    return [text[i : i + size] for i in range(0, len(text), size)]


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def no_sleep(_seconds):
    return None


async def collect(async_iterable):
    return [item async for item in async_iterable]
