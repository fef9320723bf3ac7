"""JavaScript snippets evaluated inside the chart page."""

# Inserts each study through the widget's study inserter. Returns
# {ok, error?, results: [{id, ok, error?}]}; a failing study never stops the loop.
INJECT_STUDIES_JS = """
async (studies) => {
  const cw = window.chartWidget;
  if (!cw) return { ok: false, error: 'no chartWidget' };

  const results = [];
  for (const study of studies) {
    try {
      const inserter = cw.model().createStudyInserter(
        { type: 'java', studyId: study.id },
        [],
        {}
      );
      inserter.setPropertiesState({ styles: { [study.plotName]: study.styles } });
      await inserter.insert(() => Promise.resolve({ inputs: study.inputs, parentSources: [] }));
      results.push({ id: study.id, ok: true });
    } catch (e) {
      results.push({ id: study.id, ok: false, error: String(e) });
    }
  }
  return { ok: true, results };
}
"""

# Clicks every element whose class hints at a close/dismiss control.
DISMISS_OVERLAYS_JS = """
() => {
  let clicked = 0;
  document.querySelectorAll('[class*="close"], [class*="dismiss"]').forEach((el) => {
    try { el.click(); clicked += 1; } catch (e) {}
  });
  return clicked;
}
"""

# Clicks buttons whose text matches one of the given labels.
DISMISS_CONFIRMATIONS_JS = """
(labels) => {
  let clicked = 0;
  document.querySelectorAll('button').forEach((btn) => {
    const text = btn.textContent || '';
    if (labels.some((label) => text.includes(label))) {
      try { btn.click(); clicked += 1; } catch (e) {}
    }
  });
  return clicked;
}
"""

CONFIRMATION_BUTTON_LABELS = ("Ho capito", "OK")
