"""
JavaScript evaluated inside sandboxed pages.

Every script is a function expression suitable for ``page.evaluate(script, arg)``.
"""

DOM_SNAPSHOT = """
(maxDepth) => {
  function describe(el) {
    const tag = el.tagName.toLowerCase();
    const id = el.id ? `#${el.id}` : "";
    const cls = typeof el.className === "string" && el.className.trim()
      ? "." + el.className.trim().split(/\\s+/).join(".")
      : "";
    return `${tag}${id}${cls}`;
  }
  function summarize(el, depth) {
    if (depth > maxDepth) return "";
    const indent = "  ".repeat(depth);
    const style = window.getComputedStyle(el);
    let styleInfo = "";
    if (style.position !== "static" || style.zIndex !== "auto" || style.pointerEvents !== "auto") {
      const parts = [];
      if (style.position !== "static") parts.push(`pos:${style.position}`);
      if (style.zIndex !== "auto") parts.push(`z:${style.zIndex}`);
      if (style.pointerEvents !== "auto") parts.push(`ptr:${style.pointerEvents}`);
      if (style.opacity !== "1") parts.push(`opacity:${style.opacity}`);
      styleInfo = ` [${parts.join(", ")}]`;
    }
    const text = el.children.length === 0 ? (el.textContent || "").trim().slice(0, 50) : "";
    let out = `${indent}<${describe(el)}${styleInfo}${text ? ` "${text}"` : ""}>\\n`;
    for (const child of Array.from(el.children)) out += summarize(child, depth + 1);
    return out;
  }
  return document.body ? summarize(document.body, 0) : "";
}
"""

BLOCKING_ELEMENT = """
(selector) => {
  const target = selector ? document.querySelector(selector) : null;
  const rect = target ? target.getBoundingClientRect() : null;
  const x = rect ? rect.left + rect.width / 2 : window.innerWidth / 2;
  const y = rect ? rect.top + rect.height / 2 : window.innerHeight / 2;
  const top = document.elementFromPoint(x, y);
  if (!top) return null;
  if (target && (top === target || target.contains(top))) return null;
  const style = window.getComputedStyle(top);
  const likelyOverlay =
    style.position === "fixed" ||
    style.position === "absolute" ||
    parseInt(style.zIndex, 10) > 100 ||
    (top.clientWidth > window.innerWidth * 0.8 && top.clientHeight > window.innerHeight * 0.8);
  if (!likelyOverlay && target) return null;
  const tag = top.tagName.toLowerCase();
  const testId = top.getAttribute("data-testid");
  if (testId) return `${tag}[data-testid="${testId}"]`;
  const id = top.id ? `#${top.id}` : "";
  const cls = typeof top.className === "string" && top.className.trim()
    ? "." + top.className.trim().split(/\\s+/).join(".")
    : "";
  return `${tag}${id}${cls}`;
}
"""

REMOVE_ELEMENT = """
(selector) => {
  const el = document.querySelector(selector);
  if (!el) return false;
  el.remove();
  return true;
}
"""

NEUTRALIZE_OVERLAYS = """
() => {
  let count = 0;
  document.querySelectorAll("*").forEach((el) => {
    const style = window.getComputedStyle(el);
    if (
      (style.position === "fixed" || style.position === "absolute") &&
      el.clientWidth > window.innerWidth * 0.5 &&
      el.clientHeight > window.innerHeight * 0.5 &&
      style.backgroundColor === "rgba(0, 0, 0, 0)" &&
      parseInt(style.zIndex, 10) > 100
    ) {
      el.style.pointerEvents = "none";
      count++;
    }
  });
  return count;
}
"""

CLEAR_CACHES = """
async () => {
  let cleared = 0;
  if ("caches" in window) {
    const names = await caches.keys();
    await Promise.all(names.map((name) => caches.delete(name)));
    cleared = names.length;
  }
  try { window.localStorage.clear(); } catch (e) {}
  try { window.sessionStorage.clear(); } catch (e) {}
  return cleared;
}
"""

SAFETY_SIGNALS = """
() => {
  const text = document.body ? document.body.innerText : "";
  const issues = [];
  if (text.includes("Unhandled Runtime Error")) issues.push("runtime_error");
  if (text.includes("Application error")) issues.push("application_error");
  if (/hydration failed|hydration error|did not match.*server/i.test(text)) issues.push("hydration_error");
  if (!document.body || document.body.children.length < 2) issues.push("page_destroyed");
  if (document.querySelectorAll("[role='alert']").length > 0) issues.push("error_alerts");
  return issues;
}
"""

STRUCTURE_CHECKS = """
() => ({
  header_or_nav: !!document.querySelector("header, nav, [role='banner'], [role='navigation']"),
  main_content: !!document.querySelector("main, [role='main'], article, #root, #__next"),
  text_content: (document.body ? document.body.innerText.length : 0) > 50,
  markup: (document.body ? document.body.innerHTML.length : 0) > 500,
})
"""

HIT_TEST_INTERACTIVES = """
(limit) => {
  const candidates = Array.from(
    document.querySelectorAll("a[href], button, [role='button'], input[type='submit']")
  ).filter((el) => {
    const r = el.getBoundingClientRect();
    return r.width > 0 && r.height > 0 && r.bottom > 0 && r.right > 0 &&
      r.top < window.innerHeight && r.left < window.innerWidth;
  }).slice(0, limit);
  let reachable = 0;
  for (const el of candidates) {
    const r = el.getBoundingClientRect();
    const top = document.elementFromPoint(r.left + r.width / 2, r.top + r.height / 2);
    if (top && (top === el || el.contains(top))) reachable++;
  }
  return { checked: candidates.length, reachable };
}
"""

PAGE_STATE = """
() => ({
  title: document.title,
  url: window.location.href,
  textLength: document.body ? document.body.innerText.length : 0,
  elementCount: document.getElementsByTagName("*").length,
  headings: Array.from(document.querySelectorAll("h1, h2")).slice(0, 5).map((h) => h.innerText.trim()),
})
"""
