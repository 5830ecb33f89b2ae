"""
Client Interception Injector
Script appended into rewritten documents so runtime navigation stays in the proxy
"""

import json

INTERCEPTOR_VERSION = "1"


def _js_string(value: str) -> str:
    # JSON string literal, safe to embed inside a <script> element
    return json.dumps(value).replace("</", "<\\/")


def build_interceptor_script(base_url: str, proxy_path: str = "/fetch") -> str:
    """Get the navigation interception script for a page.

    Patches fetch, XHR open and the history API, captures link clicks and
    form submissions, and reports them to the embedding frame as
    ``bb-url`` / ``bb-navigate`` messages.
    """
    base = _js_string(base_url)
    proxy_prefix = _js_string(proxy_path + "?")
    proxy_entry = _js_string(proxy_path + "?url=")

    return f"""
<script data-bb-interceptor="{INTERCEPTOR_VERSION}">
(function(){{
  var BASE={base};
  var PREFIX={proxy_prefix};
  var PROXY={proxy_entry};

  function proxied(u){{return u.indexOf(PREFIX)===0;}}
  function abs(u){{
    if(!u||u.indexOf('data:')===0||u.indexOf('javascript:')===0||
       u.indexOf('#')===0||proxied(u))return u;
    try{{return new URL(u,BASE).href;}}catch(e){{return u;}}
  }}
  function px(u){{return PROXY+encodeURIComponent(abs(u));}}
  function report(msg){{window.parent.postMessage(msg,'*');}}

  // fetch
  var _fetch=window.fetch;
  if(_fetch){{
    window.fetch=function(r,o){{
      if(typeof r==='string'&&/^https?:/i.test(r))r=px(r);
      return _fetch.call(this,r,o);
    }};
  }}

  // XHR
  var _open=XMLHttpRequest.prototype.open;
  XMLHttpRequest.prototype.open=function(m,u){{
    var args=Array.prototype.slice.call(arguments);
    if(typeof u==='string'&&/^https?:/i.test(u))args[1]=px(u);
    return _open.apply(this,args);
  }};

  // history
  var _push=history.pushState,_replace=history.replaceState;
  history.pushState=function(s,t,u){{
    if(u)report({{type:'bb-url',url:abs(String(u))}});
    return _push.apply(this,arguments);
  }};
  history.replaceState=function(s,t,u){{
    if(u)report({{type:'bb-url',url:abs(String(u))}});
    return _replace.apply(this,arguments);
  }};

  // links
  document.addEventListener('click',function(e){{
    var a=e.target&&e.target.closest?e.target.closest('a[href]'):null;
    if(!a)return;
    var h=a.getAttribute('href');
    if(!h||h.indexOf('#')===0||h.indexOf('javascript:')===0||proxied(h))return;
    e.preventDefault();e.stopPropagation();
    report({{type:'bb-navigate',url:abs(h)}});
  }},true);

  // forms
  document.addEventListener('submit',function(e){{
    var f=e.target;
    var action=f.getAttribute('action')||BASE;
    if(proxied(action))return;
    e.preventDefault();
    var absAction=abs(action);
    var method=(f.getAttribute('method')||'get').toUpperCase();
    var params=new URLSearchParams(new FormData(f)).toString();
    var isPost=method==='POST';
    var finalUrl=isPost?absAction:absAction+(absAction.indexOf('?')>=0?'&':'?')+params;
    report({{type:'bb-navigate',url:finalUrl,method:method,body:isPost?params:null}});
  }},true);

  report({{type:'bb-url',url:BASE}});
}})();
</script>"""
